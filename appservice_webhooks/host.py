from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

import aiohttp
from mautrix.api import HTTPAPI
from mautrix.appservice import AppService, IntentAPI
from mautrix.errors import MatrixError
from mautrix.types import (
    ContentURI, EventID, EventType, JoinRule, MessageEventContent, RoomCreatePreset, RoomID, UserID,
)

from .errors import UpstreamProtocolError


@asynccontextmanager
async def upstream(action: str) -> AsyncIterator[None]:
    try:
        yield
    except (MatrixError, aiohttp.ClientError) as e:
        raise UpstreamProtocolError(f"{action}: {e}") from e


class MatrixHost:
    """Everything the appservice asks of the homeserver, keyed by localpart.

    Each call acts as the virtual user named by ``localpart`` and raises
    :class:`UpstreamProtocolError` on failure.
    """

    def __init__(self, az: AppService, domain: str, bot_localpart: str) -> None:
        self.az = az
        self.domain = domain
        self.bot_localpart = bot_localpart

    def user_id(self, localpart: str) -> UserID:
        return UserID(f"@{localpart}:{self.domain}")

    def _intent(self, localpart: str) -> IntentAPI:
        if localpart == self.bot_localpart:
            return self.az.intent
        return self.az.intent.user(self.user_id(localpart))

    def is_own_user(self, user_id: UserID) -> bool:
        return str(user_id).startswith(f"@{self.bot_localpart}") and str(user_id).endswith(f":{self.domain}")

    # ---- profile ----

    async def register(self, localpart: str) -> UserID:
        async with upstream(f"Failed to register {localpart}"):
            await self._intent(localpart).ensure_registered()
        return self.user_id(localpart)

    async def set_displayname(self, localpart: str, displayname: str) -> None:
        async with upstream(f"Failed to set display name of {localpart}"):
            await self._intent(localpart).set_displayname(displayname)

    async def get_avatar_url(self, localpart: str) -> Optional[ContentURI]:
        async with upstream(f"Failed to get avatar of {localpart}"):
            return await self._intent(localpart).get_avatar_url(self.user_id(localpart))

    async def set_avatar_url(self, localpart: str, url: ContentURI) -> None:
        async with upstream(f"Failed to set avatar of {localpart}"):
            await self._intent(localpart).set_avatar_url(url)

    async def download_media(self, localpart: str, url: ContentURI) -> bytes:
        try:
            HTTPAPI.parse_mxc_uri(url)
        except ValueError as e:
            raise UpstreamProtocolError(f"Failed to download {url}: {e}") from e
        async with upstream(f"Failed to download {url}"):
            return await self._intent(localpart).download_media(url)

    async def upload_media(self, localpart: str, data: bytes, mime_type: str) -> ContentURI:
        async with upstream(f"Failed to upload media for {localpart}"):
            return await self._intent(localpart).upload_media(data, mime_type=mime_type)

    # ---- rooms ----

    async def joined_rooms(self, localpart: str) -> List[RoomID]:
        async with upstream(f"Failed to list joined rooms of {localpart}"):
            return await self._intent(localpart).get_joined_rooms()

    async def is_joined(self, localpart: str, room_id: RoomID) -> bool:
        return room_id in await self.joined_rooms(localpart)

    async def joined_members(self, localpart: str, room_id: RoomID) -> List[UserID]:
        async with upstream(f"Failed to get members of {room_id}"):
            members = await self._intent(localpart).get_joined_members(room_id)
        return list(members)

    async def is_public(self, localpart: str, room_id: RoomID) -> bool:
        async with upstream(f"Failed to get join rules of {room_id}"):
            content = await self._intent(localpart).get_state_event(room_id, EventType.ROOM_JOIN_RULES)
        return content.join_rule == JoinRule.PUBLIC

    async def create_private_room(self, localpart: str, invitee: UserID) -> RoomID:
        async with upstream(f"Failed to create room with {invitee}"):
            return await self._intent(localpart).create_room(
                preset=RoomCreatePreset.PRIVATE, invitees=[invitee],
            )

    async def invite(self, localpart: str, room_id: RoomID, user_id: UserID) -> None:
        """Invite ``user_id``. Inviting someone already in the room is a no-op.

        ``IntentAPI.invite_user`` already treats ``M_FORBIDDEN`` "already in
        the room" as success, which is what concurrent deliveries to the same
        webhook run into.
        """
        async with upstream(f"Failed to invite {user_id} to {room_id}"):
            await self._intent(localpart).invite_user(room_id, user_id)

    async def join(self, localpart: str, room_id: RoomID) -> None:
        async with upstream(f"Failed to join {room_id} as {localpart}"):
            await self._intent(localpart).join_room_by_id(room_id)

    async def send_message(self, localpart: str, room_id: RoomID, content: MessageEventContent) -> EventID:
        async with upstream(f"Failed to send message to {room_id}"):
            return await self._intent(localpart).send_message(room_id, content)
