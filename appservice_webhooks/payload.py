from enum import Enum
from typing import Any, Dict, Optional

from attr import dataclass
from mautrix.types import Format, MessageType, TextMessageEventContent

from .errors import ValidationError
from .transform import html_to_text, replace_emoji

DEFAULT_DISPLAY_NAME = "Incoming Webhook"


class PayloadFormat(Enum):
    PLAIN = "plain"
    HTML = "html"


class PayloadMsgType(Enum):
    REGULAR = "regular"
    NOTICE = "notice"
    EMOTE = "emote"


MSGTYPES: Dict[PayloadMsgType, MessageType] = {
    PayloadMsgType.REGULAR: MessageType.TEXT,
    PayloadMsgType.NOTICE: MessageType.NOTICE,
    PayloadMsgType.EMOTE: MessageType.EMOTE,
}


def _opt_str(data: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = data.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise ValidationError(f"'{key}' must be a string")
        return value
    return None


def _enum(cls, data: Dict[str, Any], key: str, default=None):
    value = data.get(key)
    if value is None:
        if default is None:
            raise ValidationError(f"Missing required field '{key}'")
        return default
    try:
        return cls(value)
    except ValueError:
        allowed = "|".join(m.value for m in cls)
        raise ValidationError(f"Invalid {key} {value!r}: use {allowed}") from None


@dataclass(frozen=True)
class WebhookPayload:
    """A validated inbound webhook request body.

    ``username`` and ``icon_url`` are accepted as Slack-compatible aliases
    for ``displayName`` and ``avatarUrl``.
    """

    text: str
    format: PayloadFormat
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    emoji: bool = True
    msgtype: PayloadMsgType = PayloadMsgType.REGULAR
    username: Optional[str] = None
    icon_url: Optional[str] = None

    @classmethod
    def from_json(cls, data: Any) -> "WebhookPayload":
        if not isinstance(data, dict):
            raise ValidationError("Webhook body must be a JSON object")
        text = data.get("text")
        if not isinstance(text, str):
            raise ValidationError("Missing required string field 'text'")
        emoji = data.get("emoji", True)
        if not isinstance(emoji, bool):
            raise ValidationError("'emoji' must be a boolean")
        return cls(
            text=text,
            format=_enum(PayloadFormat, data, "format"),
            display_name=_opt_str(data, "displayName"),
            avatar_url=_opt_str(data, "avatarUrl"),
            emoji=emoji,
            msgtype=_enum(PayloadMsgType, data, "msgtype", PayloadMsgType.REGULAR),
            username=_opt_str(data, "username"),
            icon_url=_opt_str(data, "icon_url", "iconUrl"),
        )

    def get_display_name(self) -> str:
        if self.display_name is not None:
            name = self.display_name
        elif self.username is not None:
            name = self.username
        else:
            name = DEFAULT_DISPLAY_NAME
        return replace_emoji(name) if self.emoji else name

    def get_avatar_url(self) -> Optional[str]:
        return self.avatar_url if self.avatar_url is not None else self.icon_url

    def parse_text(self) -> str:
        return replace_emoji(self.text) if self.emoji else self.text

    def create_message(self) -> TextMessageEventContent:
        parsed = self.parse_text()
        content = TextMessageEventContent(msgtype=MSGTYPES[self.msgtype], body=parsed)
        if self.format == PayloadFormat.HTML:
            content.format = Format.HTML
            content.formatted_body = parsed
            content.body = html_to_text(parsed)
        return content
