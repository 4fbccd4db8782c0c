import re
import secrets
from typing import Any, Dict, List

from mautrix.util.config import (
    BaseFileConfig, BaseValidatableConfig, ConfigUpdateHelper, ForbiddenDefault,
)


class Config(BaseFileConfig, BaseValidatableConfig):
    def do_update(self, helper: ConfigUpdateHelper) -> None:
        copy = helper.copy
        # homeserver
        copy("homeserver.address")
        copy("homeserver.domain")
        copy("homeserver.verify_ssl")
        # appservice
        copy("appservice.address")
        copy("appservice.hostname")
        copy("appservice.port")
        copy("appservice.id")
        copy("appservice.as_token")
        copy("appservice.hs_token")
        copy("appservice.database")
        copy("appservice.database_opts")
        # bot identity
        copy("webhook_bot.localpart")
        copy("webhook_bot.appearance.display_name")
        copy("webhook_bot.appearance.avatar_url")
        # http
        copy("web.hook_url_base")
        copy("web.path_prefix")
        copy("web.max_body_bytes")
        copy("web.avatar_fetch_timeout")
        copy("logging")

    @property
    def forbidden_defaults(self) -> List[ForbiddenDefault]:
        return [
            ForbiddenDefault("homeserver.address", "https://example.com"),
            ForbiddenDefault("homeserver.domain", "example.com"),
        ]

    @property
    def bot_localpart(self) -> str:
        return self["webhook_bot.localpart"]

    def hook_url(self, webhook_id: str) -> str:
        base = self["web.hook_url_base"].rstrip("/")
        prefix = self["web.path_prefix"].strip("/")
        return f"{base}/{prefix}/hook/{webhook_id}"

    def generate_registration(self) -> Dict[str, Any]:
        """Issue fresh appservice tokens and return the matching registration."""
        self["appservice.as_token"] = secrets.token_urlsafe(48)
        self["appservice.hs_token"] = secrets.token_urlsafe(48)
        localpart = self.bot_localpart
        domain = self["homeserver.domain"]
        return {
            "id": self["appservice.id"],
            "url": self["appservice.address"],
            "as_token": self["appservice.as_token"],
            "hs_token": self["appservice.hs_token"],
            "sender_localpart": localpart,
            "namespaces": {
                "users": [{
                    "exclusive": True,
                    "regex": f"@{re.escape(localpart)}.*:{re.escape(domain)}",
                }],
            },
            "rate_limited": False,
        }
