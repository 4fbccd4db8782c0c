import logging

import jinja2
from mautrix.types import (
    Event, EventType, Format, Membership, MessageEvent, MessageType, RoomID, StateEvent,
    TextMessageEventContent,
)

from .admin_room import get_or_create_admin_room
from .config import Config
from .host import MatrixHost
from .identity import IdentityProvisioner
from .store import WebhookStore

COMMAND_PREFIX = "!webhook"

SETUP_PLAIN = """Here's your webhook url: {{ url }}
To send a message, POST the following JSON to that URL:
{
  "text": "Hello world!",
  "format": "plain",
  "displayName": "My Cool Webhook",
  "avatarUrl": "{{ avatar_url }}"
}
"""

SETUP_HTML = """Here's your webhook url: <a href="{{ url }}">{{ url }}</a><br>
To send a message, POST the following JSON to that URL:
<pre><code>{
  "text": "Hello world!",
  "format": "plain",
  "displayName": "My Cool Webhook",
  "avatarUrl": "{{ avatar_url }}"
}</code></pre>
"""

ROOM_NOTICE = "I've sent you a private message with your hook information"


class WebhookBot:
    """The primary bot: joins rooms it's invited to and hands out webhooks.

    Handlers never raise back into the appservice; failures are logged and
    the event is dropped.
    """

    def __init__(
        self, config: Config, store: WebhookStore, host: MatrixHost, provisioner: IdentityProvisioner
    ) -> None:
        self.config = config
        self.store = store
        self.host = host
        self.provisioner = provisioner
        self.localpart = config.bot_localpart
        self.mxid = host.user_id(self.localpart)
        self.log = logging.getLogger("webhooks.bot")
        self.setup_plain = jinja2.Environment(autoescape=False).from_string(SETUP_PLAIN)
        self.setup_html = jinja2.Environment(autoescape=True).from_string(SETUP_HTML)

    async def start(self) -> None:
        self.log.info("Registering the webhook bot with the homeserver")
        await self.provisioner.ensure_identity(
            self.localpart,
            self.config["webhook_bot.appearance.display_name"],
            self.config["webhook_bot.appearance.avatar_url"],
        )
        rooms = await self.host.joined_rooms(self.localpart)
        self.log.info(f"Webhook bot {self.mxid} is in {len(rooms)} rooms")

    # ---- dispatch ----

    async def handle_event(self, evt: Event) -> None:
        room_id = getattr(evt, "room_id", None)
        try:
            if evt.type == EventType.ROOM_MEMBER and isinstance(evt, StateEvent):
                await self.handle_room_member(evt)
            elif evt.type == EventType.ROOM_MESSAGE and isinstance(evt, MessageEvent):
                await self.handle_room_message(evt)
        except Exception:
            self.log.exception(f"Error handling {evt.type} event in room {room_id}")

    # ---- invites ----

    async def handle_room_member(self, evt: StateEvent) -> None:
        if evt.content.membership != Membership.INVITE:
            return
        if evt.state_key != self.mxid:
            self.log.debug("Ignoring invite that is not for the webhook bot")
            return
        self.log.info(f"Received invite to room {evt.room_id}. Joining")
        await self.host.join(self.localpart, evt.room_id)

    # ---- !webhook ----

    async def handle_room_message(self, evt: MessageEvent) -> None:
        if self.host.is_own_user(evt.sender):
            return
        content = evt.content
        if content.msgtype != MessageType.TEXT or not (content.body or "").startswith(COMMAND_PREFIX):
            return
        self.log.info(f"Received {COMMAND_PREFIX} message in room {evt.room_id}. Creating webhook")

        admin_room = await get_or_create_admin_room(self.host, self.localpart, evt.sender)
        hook = await self.store.create_webhook(evt.room_id, evt.sender)
        await self.host.send_message(self.localpart, admin_room, self.render_setup(self.config.hook_url(hook.id)))
        if admin_room != evt.room_id:
            await self.send_notice(evt.room_id, ROOM_NOTICE)

    def render_setup(self, url: str) -> TextMessageEventContent:
        params = {"url": url, "avatar_url": self.config["webhook_bot.appearance.avatar_url"]}
        return TextMessageEventContent(
            msgtype=MessageType.NOTICE,
            body=self.setup_plain.render(params),
            format=Format.HTML,
            formatted_body=self.setup_html.render(params),
        )

    async def send_notice(self, room_id: RoomID, text: str) -> None:
        content = TextMessageEventContent(msgtype=MessageType.NOTICE, body=text)
        await self.host.send_message(self.localpart, room_id, content)
