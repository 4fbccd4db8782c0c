"""Shared test fixtures and fakes."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from mautrix.appservice import AppServiceAPI
from mautrix.appservice.state_store import FileASStateStore
from mautrix.types import ContentURI, EventID, MessageEventContent, RoomID, UserID

import appservice_webhooks
from appservice_webhooks.config import Config
from appservice_webhooks.errors import StorageError, UpstreamProtocolError
from appservice_webhooks.host import MatrixHost
from appservice_webhooks.store import WebhookRecord, generate_webhook_id

EXAMPLE_CONFIG = Path(appservice_webhooks.__file__).parent / "example-config.yaml"

DOMAIN = "example.com"
BOT = "_webhook"
BOT_MXID = UserID(f"@{BOT}:{DOMAIN}")
ALICE = UserID(f"@alice:{DOMAIN}")
BOB = UserID(f"@bob:{DOMAIN}")


class FakeRoom:
    def __init__(self, members: list[UserID], public: bool = False) -> None:
        self.members = list(members)
        self.invited: list[UserID] = []
        self.public = public
        self.broken = False


class FakeHost:
    """In-memory stand-in for :class:`MatrixHost`.

    Every call yields to the event loop once so concurrent callers
    interleave the way they would against a real homeserver.
    """

    is_own_user = MatrixHost.is_own_user

    def __init__(self) -> None:
        self.domain = DOMAIN
        self.bot_localpart = BOT
        self.rooms: dict[RoomID, FakeRoom] = {}
        self.registered: set[str] = set()
        self.register_calls = 0
        self.displaynames: dict[str, str] = {}
        self.avatar_urls: dict[str, ContentURI] = {}
        self.media: dict[ContentURI, bytes] = {}
        self.uploads: list[tuple[str, bytes, str]] = []
        self.invites: list[tuple[str, RoomID, UserID]] = []
        self.joins: list[tuple[str, RoomID]] = []
        self.created: list[tuple[RoomID, UserID]] = []
        self.sent: list[tuple[str, RoomID, MessageEventContent]] = []
        self.fail: set[str] = set()

    def user_id(self, localpart: str) -> UserID:
        return UserID(f"@{localpart}:{self.domain}")

    def add_room(self, room_id: str, members: list[UserID], public: bool = False) -> FakeRoom:
        room = FakeRoom(members, public)
        self.rooms[RoomID(room_id)] = room
        return room

    async def _call(self, name: str) -> None:
        await asyncio.sleep(0)
        if name in self.fail:
            raise UpstreamProtocolError(f"{name} failed")

    async def register(self, localpart: str) -> UserID:
        await self._call("register")
        self.register_calls += 1
        self.registered.add(localpart)
        return self.user_id(localpart)

    async def set_displayname(self, localpart: str, displayname: str) -> None:
        await self._call("set_displayname")
        self.displaynames[localpart] = displayname

    async def get_avatar_url(self, localpart: str) -> ContentURI | None:
        await self._call("get_avatar_url")
        return self.avatar_urls.get(localpart)

    async def set_avatar_url(self, localpart: str, url: ContentURI) -> None:
        await self._call("set_avatar_url")
        self.avatar_urls[localpart] = url

    async def download_media(self, localpart: str, url: ContentURI) -> bytes:
        await self._call("download_media")
        if url not in self.media:
            raise UpstreamProtocolError(f"Failed to download {url}")
        return self.media[url]

    async def upload_media(self, localpart: str, data: bytes, mime_type: str) -> ContentURI:
        await self._call("upload_media")
        url = ContentURI(f"mxc://{self.domain}/media{len(self.media)}")
        self.media[url] = data
        self.uploads.append((localpart, data, mime_type))
        return url

    async def joined_rooms(self, localpart: str) -> list[RoomID]:
        await self._call("joined_rooms")
        user_id = self.user_id(localpart)
        return [room_id for room_id, room in self.rooms.items() if user_id in room.members]

    async def is_joined(self, localpart: str, room_id: RoomID) -> bool:
        return room_id in await self.joined_rooms(localpart)

    async def joined_members(self, localpart: str, room_id: RoomID) -> list[UserID]:
        await self._call("joined_members")
        room = self.rooms[room_id]
        if room.broken:
            raise UpstreamProtocolError(f"Failed to get members of {room_id}")
        return list(room.members)

    async def is_public(self, localpart: str, room_id: RoomID) -> bool:
        await self._call("is_public")
        return self.rooms[room_id].public

    async def create_private_room(self, localpart: str, invitee: UserID) -> RoomID:
        await self._call("create_private_room")
        room_id = RoomID(f"!new{len(self.created)}:{self.domain}")
        room = self.add_room(room_id, [self.user_id(localpart)])
        room.invited.append(invitee)
        self.created.append((room_id, invitee))
        return room_id

    async def invite(self, localpart: str, room_id: RoomID, user_id: UserID) -> None:
        await self._call("invite")
        room = self.rooms[room_id]
        self.invites.append((localpart, room_id, user_id))
        if user_id not in room.members and user_id not in room.invited:
            room.invited.append(user_id)

    async def join(self, localpart: str, room_id: RoomID) -> None:
        await self._call("join")
        user_id = self.user_id(localpart)
        room = self.rooms.setdefault(room_id, FakeRoom([]))
        self.joins.append((localpart, room_id))
        if user_id in room.members:
            return
        if user_id not in room.invited and localpart != self.bot_localpart:
            raise UpstreamProtocolError(f"{user_id} is not invited to {room_id}")
        room.members.append(user_id)

    async def send_message(self, localpart: str, room_id: RoomID, content: MessageEventContent) -> EventID:
        await self._call("send_message")
        self.sent.append((localpart, room_id, content))
        return EventID(f"$event{len(self.sent)}")


class FakeStore:
    def __init__(self) -> None:
        self.hooks: dict[str, WebhookRecord] = {}
        self.fail = False

    def add(self, room_id: str, user_id: UserID = ALICE) -> WebhookRecord:
        hook = WebhookRecord(id=generate_webhook_id(), room_id=RoomID(room_id), user_id=user_id)
        self.hooks[hook.id] = hook
        return hook

    async def create_webhook(self, room_id: RoomID, user_id: UserID) -> WebhookRecord:
        if self.fail:
            raise StorageError("disk on fire")
        return self.add(room_id, user_id)

    async def get_webhook_by_id(self, webhook_id: str) -> WebhookRecord | None:
        if self.fail:
            raise StorageError("disk on fire")
        return self.hooks.get(webhook_id)


class FakeHomeserver:
    """Just enough of the client-server API to drive a real ``IntentAPI``.

    Requests are routed by their action (``register``, ``invite``, ``send``,
    ...). ``fail(action, ...)`` makes that action answer with a Matrix error.
    """

    def __init__(self) -> None:
        self.registered: set[UserID] = set()
        self.profiles: dict[UserID, dict[str, str]] = {}
        self.media: dict[str, bytes] = {}
        self.rooms: dict[RoomID, dict[str, Any]] = {}
        self.sent: list[tuple[UserID, RoomID, dict[str, Any]]] = []
        self.errors: dict[str, tuple[int, str, str]] = {}
        self.url = ""
        self.app = web.Application()
        self.app.router.add_route("*", "/{path:.*}", self.handle)

    def add_room(self, room_id: str, members: list[UserID], join_rule: str = "invite") -> RoomID:
        self.rooms[RoomID(room_id)] = {"members": set(members), "invited": set(), "join_rule": join_rule}
        return RoomID(room_id)

    def fail(self, action: str, status: int, errcode: str, error: str) -> None:
        self.errors[action] = (status, errcode, error)

    @staticmethod
    def error(status: int, errcode: str, error: str) -> web.Response:
        return web.json_response({"errcode": errcode, "error": error}, status=status)

    async def handle(self, req: web.Request) -> web.Response:
        path = req.match_info["path"]
        if path == "_matrix/client/versions":
            return web.json_response({"versions": ["v1.1"]})
        # _matrix/{client,media}/v3/<rest>
        rest = path.split("/")[3:]
        action = rest[2] if rest[0] == "rooms" else rest[0]
        if action in self.errors:
            return self.error(*self.errors[action])
        user_id = UserID(req.query.get("user_id", ""))
        body = await req.read()
        handler = getattr(self, f"on_{action}")
        return await handler(req, user_id, rest, body)

    async def on_register(self, req, user_id, rest, body) -> web.Response:
        mxid = UserID(f"@{json.loads(body)['username']}:{DOMAIN}")
        if mxid in self.registered:
            return self.error(400, "M_USER_IN_USE", "User ID already taken.")
        self.registered.add(mxid)
        return web.json_response({"user_id": mxid})

    async def on_profile(self, req, user_id, rest, body) -> web.Response:
        target, field = UserID(rest[1]), rest[2]
        profile = self.profiles.setdefault(target, {})
        if req.method == "PUT":
            profile[field] = json.loads(body)[field]
            return web.json_response({})
        if field not in profile:
            return self.error(404, "M_NOT_FOUND", "Profile field not set")
        return web.json_response({field: profile[field]})

    async def on_upload(self, req, user_id, rest, body) -> web.Response:
        media_id = f"media{len(self.media)}"
        self.media[media_id] = body
        return web.json_response({"content_uri": f"mxc://{DOMAIN}/{media_id}"})

    async def on_download(self, req, user_id, rest, body) -> web.Response:
        if rest[2] not in self.media:
            return self.error(404, "M_NOT_FOUND", "Media not found")
        return web.Response(body=self.media[rest[2]], content_type="application/octet-stream")

    async def on_joined_rooms(self, req, user_id, rest, body) -> web.Response:
        rooms = [room_id for room_id, room in self.rooms.items() if user_id in room["members"]]
        return web.json_response({"joined_rooms": rooms})

    async def on_joined_members(self, req, user_id, rest, body) -> web.Response:
        members = self.rooms[RoomID(rest[1])]["members"]
        return web.json_response({"joined": {member: {} for member in members}})

    async def on_state(self, req, user_id, rest, body) -> web.Response:
        room = self.rooms[RoomID(rest[1])]
        if rest[3] == "m.room.join_rules":
            return web.json_response({"join_rule": room["join_rule"]})
        if rest[3] == "m.room.power_levels":
            return web.json_response({"users_default": 100, "events_default": 0, "state_default": 0})
        return self.error(404, "M_NOT_FOUND", "Event not found")

    async def on_invite(self, req, user_id, rest, body) -> web.Response:
        room = self.rooms[RoomID(rest[1])]
        invitee = UserID(json.loads(body)["user_id"])
        if invitee in room["members"]:
            return self.error(403, "M_FORBIDDEN", f"{invitee} is already in the room.")
        room["invited"].add(invitee)
        return web.json_response({})

    async def on_join(self, req, user_id, rest, body) -> web.Response:
        room_id = RoomID(rest[1])
        room = self.rooms[room_id]
        if user_id not in room["invited"] | room["members"] and room["join_rule"] != "public":
            return self.error(403, "M_FORBIDDEN", f"{user_id} is not invited to this room")
        room["members"].add(user_id)
        return web.json_response({"room_id": room_id})

    async def on_send(self, req, user_id, rest, body) -> web.Response:
        self.sent.append((user_id, RoomID(rest[1]), json.loads(body)))
        return web.json_response({"event_id": f"$event{len(self.sent)}"})

    async def on_createRoom(self, req, user_id, rest, body) -> web.Response:
        data = json.loads(body)
        room_id = self.add_room(f"!new{len(self.rooms)}:{DOMAIN}", [user_id])
        self.rooms[room_id]["invited"].update(data.get("invite", []))
        self.rooms[room_id]["preset"] = data.get("preset")
        return web.json_response({"room_id": room_id})


@pytest.fixture
async def homeserver() -> AsyncIterator[FakeHomeserver]:
    hs = FakeHomeserver()
    server = TestServer(hs.app)
    await server.start_server()
    hs.url = f"http://{server.host}:{server.port}"
    yield hs
    await server.close()


@pytest.fixture
async def matrix_host(homeserver: FakeHomeserver, tmp_path: Path) -> AsyncIterator[MatrixHost]:
    """A real :class:`MatrixHost` over mautrix's ``IntentAPI``, talking to ``homeserver``."""
    async with aiohttp.ClientSession() as session:
        api = AppServiceAPI(
            base_url=homeserver.url,
            bot_mxid=BOT_MXID,
            token="as_token",
            log=logging.getLogger("webhooks.test.as"),
            state_store=FileASStateStore(tmp_path / "mx-state.json", binary=False),
            client_session=session,
        )
        yield MatrixHost(SimpleNamespace(intent=api.bot_intent()), DOMAIN, BOT)


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def config() -> Config:
    config = Config(str(EXAMPLE_CONFIG), str(EXAMPLE_CONFIG))
    config.load()
    return config


def payload_json(**kwargs: Any) -> dict[str, Any]:
    data: dict[str, Any] = {"text": "Hello world!", "format": "plain"}
    data.update(kwargs)
    return data
