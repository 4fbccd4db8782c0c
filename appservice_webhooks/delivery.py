import logging

from mautrix.types import EventID

from .errors import NotFoundError
from .host import MatrixHost
from .identity import IdentityProvisioner, webhook_localpart
from .payload import WebhookPayload
from .store import WebhookStore


class WebhookDelivery:
    """Posts one inbound webhook payload into its room as the webhook's own user.

    No lock is held across the steps. Two deliveries to the same webhook
    may both try to register, invite and join; the homeserver treats the
    repeats as no-ops, so both still send.
    """

    def __init__(
        self, store: WebhookStore, host: MatrixHost, provisioner: IdentityProvisioner, bot_localpart: str
    ) -> None:
        self.store = store
        self.host = host
        self.provisioner = provisioner
        self.bot_localpart = bot_localpart
        self.log = logging.getLogger("webhooks.delivery")

    async def deliver(self, webhook_id: str, payload: WebhookPayload) -> EventID:
        hook = await self.store.get_webhook_by_id(webhook_id)
        if hook is None:
            raise NotFoundError("Could not find webhook")

        localpart = webhook_localpart(self.bot_localpart, hook.id)
        user_id = await self.provisioner.ensure_identity(
            localpart, payload.get_display_name(), payload.get_avatar_url()
        )

        if not await self.host.is_joined(localpart, hook.room_id):
            if not await self.host.is_joined(self.bot_localpart, hook.room_id):
                raise NotFoundError(f"Webhook bot is not in room {hook.room_id}")
            self.log.debug(f"Inviting {user_id} to {hook.room_id}")
            await self.host.invite(self.bot_localpart, hook.room_id, user_id)
            await self.host.join(localpart, hook.room_id)

        event_id = await self.host.send_message(localpart, hook.room_id, payload.create_message())
        self.log.debug(f"Delivered webhook {webhook_id[:6]}… to {hook.room_id} as {event_id}")
        return event_id
