import logging
from typing import List

from attr import dataclass
from mautrix.types import RoomID, UserID

from .errors import UpstreamProtocolError
from .host import MatrixHost

log = logging.getLogger("webhooks.admin_room")


@dataclass(frozen=True)
class AdminRoomCandidate:
    room_id: RoomID
    is_public: bool
    member_user_ids: List[UserID]

    @property
    def member_count(self) -> int:
        return len(self.member_user_ids)

    def is_admin_room_for(self, counterparty: UserID) -> bool:
        return (
            not self.is_public
            and self.member_count <= 2
            and counterparty in self.member_user_ids
        )


async def get_or_create_admin_room(host: MatrixHost, localpart: str, counterparty: UserID) -> RoomID:
    """Find the private 1:1 room between the bot and ``counterparty``, or create one.

    Rooms whose join rules or members can't be fetched are skipped rather
    than failing the lookup. This is one round trip per joined room, which
    is fine for something only a human command triggers.
    """
    for room_id in await host.joined_rooms(localpart):
        try:
            public = await host.is_public(localpart, room_id)
        except UpstreamProtocolError as e:
            log.debug(f"Skipping {room_id} because I could not get the join rules: {e}")
            continue
        if public:
            log.debug(f"Skipping {room_id} because it is public")
            continue

        try:
            members = await host.joined_members(localpart, room_id)
        except UpstreamProtocolError as e:
            log.debug(f"Skipping {room_id} because I could not get the members: {e}")
            continue

        candidate = AdminRoomCandidate(room_id=room_id, is_public=public, member_user_ids=members)
        if candidate.is_admin_room_for(counterparty):
            log.debug(f"Using room {room_id} for admin room with {counterparty}")
            return room_id
        log.debug(
            f"Skipping {room_id}: {candidate.member_count} members, "
            f"counterparty {'present' if counterparty in members else 'absent'}"
        )

    room_id = await host.create_private_room(localpart, counterparty)
    log.info(f"Created admin room {room_id} with {counterparty}")
    return room_id
