from functools import lru_cache
from typing import Dict, List

import emoji
from bs4 import BeautifulSoup


@lru_cache(maxsize=None)
def emoji_table() -> Dict[str, str]:
    """Shortcode name (without colons) → glyph.

    Covers both the CLDR names (``red_heart``) and the GitHub/Slack style
    aliases (``heart``). Fully-qualified glyphs win when a name is shared.
    """
    fully_qualified = emoji.STATUS["fully_qualified"]
    entries = sorted(
        emoji.EMOJI_DATA.items(),
        key=lambda item: item[1].get("status") != fully_qualified,
    )
    table: Dict[str, str] = {}
    for glyph, data in entries:
        for name in [data["en"], *data.get("alias", [])]:
            table.setdefault(name.strip(":"), glyph)
    return table


def replace_emoji(s: str) -> str:
    """Replace ``:name:`` shortcodes with their glyphs.

    The string is split on ``:``. The first and last pieces are always kept
    as they are. A recognized interior piece swallows both of its colons,
    and the piece right after it is then emitted as-is. Anything else keeps
    its colon.
    """
    table = emoji_table()
    parts = s.split(":")
    last = len(parts) - 1
    out: List[str] = [parts[0]]
    skip = False
    for i in range(1, len(parts)):
        part = parts[i]
        if skip:
            out.append(part)
            skip = False
            continue
        glyph = table.get(part) if i != last and part else None
        if glyph is not None:
            out.append(glyph)
            skip = True
        else:
            out.append(":")
            out.append(part)
    return "".join(out)


def html_to_text(raw: str) -> str:
    """Concatenate the text nodes of an HTML fragment in document order."""
    return BeautifulSoup(raw, "html.parser").get_text()
