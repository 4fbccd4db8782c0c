import asyncio
import hashlib
import logging
import re
from typing import Optional, Tuple

import aiohttp
from aiohttp import hdrs
from mautrix.api import HTTPAPI
from mautrix.types import ContentURI, UserID

from .errors import AvatarFetchError, UpstreamProtocolError
from .host import MatrixHost

MIME_RE = re.compile(r"^[\w.+-]+/[\w.+-]+$")


def webhook_localpart(bot_localpart: str, webhook_id: str) -> str:
    """Localpart of the virtual user that posts for ``webhook_id``."""
    id_hash = hashlib.sha256(webhook_id.encode("utf-8")).digest()[:16].hex()
    return f"{bot_localpart}__{id_hash}"


async def download_avatar(
    http: aiohttp.ClientSession, url: str, timeout: float = 30
) -> Tuple[str, bytes]:
    try:
        async with http.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as resp:
            if resp.status >= 300:
                raise AvatarFetchError(f"Avatar request returned HTTP {resp.status}")
            raw_mime = resp.headers.get(hdrs.CONTENT_TYPE)
            if not raw_mime:
                raise AvatarFetchError("Server did not return a Content-Type header")
            mime = raw_mime.split(";", 1)[0].strip().lower()
            if not MIME_RE.match(mime):
                raise AvatarFetchError(f"Could not parse Content-Type {raw_mime!r} into a mime type")
            body = await resp.read()
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        raise AvatarFetchError(f"Failed to fetch avatar from provided url: {e}") from e
    if not body:
        raise AvatarFetchError("Avatar request returned empty")
    return mime, body


class IdentityProvisioner:
    """Makes sure a virtual user exists and looks the way it was asked to.

    Safe to call on every delivery: registration tolerates an existing
    account, the display name is always set, and the avatar is only
    uploaded when its bytes changed. Avatar problems are logged and never
    stop provisioning.
    """

    def __init__(self, host: MatrixHost, http: aiohttp.ClientSession, fetch_timeout: float = 30) -> None:
        self.host = host
        self.http = http
        self.fetch_timeout = fetch_timeout
        self.log = logging.getLogger("webhooks.identity")

    async def ensure_identity(
        self, localpart: str, displayname: str, avatar_url: Optional[str]
    ) -> UserID:
        user_id = await self.host.register(localpart)
        await self.host.set_displayname(localpart, displayname)
        if avatar_url:
            await self._sync_avatar(localpart, avatar_url)
        else:
            self.log.debug(f"No avatar given for {user_id}, leaving it as is")
        return user_id

    async def _sync_avatar(self, localpart: str, avatar_url: str) -> None:
        try:
            await self._update_avatar(localpart, avatar_url)
        except AvatarFetchError as e:
            self.log.warning(f"Failed to update avatar of {localpart} from {avatar_url}: {e}")

    async def _update_avatar(self, localpart: str, avatar_url: str) -> None:
        if avatar_url.startswith("mxc://"):
            await self._set_mxc_avatar(localpart, ContentURI(avatar_url))
            return

        mime, data = await download_avatar(self.http, avatar_url, self.fetch_timeout)
        if await self._current_avatar(localpart) == data:
            self.log.debug(f"Avatar of {localpart} is unchanged, not uploading")
            return
        try:
            mxc = await self.host.upload_media(localpart, data, mime)
            await self.host.set_avatar_url(localpart, mxc)
        except UpstreamProtocolError as e:
            raise AvatarFetchError(f"Failed to upload fetched avatar to homeserver: {e}") from e
        self.log.debug(f"Updated avatar of {localpart} to {mxc}")

    async def _set_mxc_avatar(self, localpart: str, url: ContentURI) -> None:
        try:
            server_name, media_id = HTTPAPI.parse_mxc_uri(url)
        except ValueError as e:
            raise AvatarFetchError(f"Invalid mxc:// avatar URL: {e}") from e
        if not server_name or not media_id:
            raise AvatarFetchError(f"Invalid mxc:// avatar URL {url!r}")
        try:
            current = await self.host.get_avatar_url(localpart)
            if current == url:
                return
            await self.host.set_avatar_url(localpart, url)
        except UpstreamProtocolError as e:
            raise AvatarFetchError(str(e)) from e

    async def _current_avatar(self, localpart: str) -> Optional[bytes]:
        try:
            url = await self.host.get_avatar_url(localpart)
            if not url:
                return None
            return await self.host.download_media(localpart, url)
        except UpstreamProtocolError as e:
            self.log.debug(f"Could not fetch current avatar of {localpart}: {e}")
            return None
