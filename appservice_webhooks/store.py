import logging
import secrets
from typing import Optional

from attr import dataclass
from mautrix.types import RoomID, UserID
from mautrix.util.async_db import Database

from .errors import StorageError

# 24 random bytes encode to exactly 32 URL-safe characters
TOKEN_BYTES = 24


def generate_webhook_id() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


@dataclass(frozen=True)
class WebhookRecord:
    id: str
    room_id: RoomID
    user_id: UserID
    label: Optional[str] = None

    @classmethod
    def _from_row(cls, row) -> "WebhookRecord":
        return cls(
            id=row["id"],
            room_id=RoomID(row["room_id"]),
            user_id=UserID(row["user_id"]),
            label=row["label"],
        )


class WebhookStore:
    """Durable webhook id → (room, owner) mapping.

    The id doubles as the only credential for posting into the room, so it
    is drawn from :mod:`secrets` and handed out only after the INSERT
    has completed.
    """

    def __init__(self, db: Database) -> None:
        self.db = db
        self.log = logging.getLogger("webhooks.store")

    async def create_webhook(self, room_id: RoomID, user_id: UserID) -> WebhookRecord:
        hook = WebhookRecord(id=generate_webhook_id(), room_id=room_id, user_id=user_id)
        try:
            await self.db.execute(
                "INSERT INTO webhooks (id, room_id, user_id, label) VALUES ($1, $2, $3, NULL)",
                hook.id, str(hook.room_id), str(hook.user_id),
            )
        except Exception as e:
            raise StorageError(f"Failed to store webhook for {room_id}: {e}") from e
        self.log.debug(f"Stored new webhook for {room_id} owned by {user_id}")
        return hook

    async def get_webhook_by_id(self, webhook_id: str) -> Optional[WebhookRecord]:
        try:
            row = await self.db.fetchrow(
                "SELECT id, room_id, user_id, label FROM webhooks WHERE id=$1", webhook_id
            )
        except Exception as e:
            raise StorageError(f"Failed to look up webhook: {e}") from e
        if not row:
            return None
        return WebhookRecord._from_row(row)
