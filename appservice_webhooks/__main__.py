import sys

import aiohttp
from mautrix.appservice import AppService
from mautrix.util.async_db import Database
from mautrix.util.program import Program
from ruamel.yaml import YAML

from . import __version__
from .bot import WebhookBot
from .config import Config
from .delivery import WebhookDelivery
from .host import MatrixHost
from .identity import IdentityProvisioner
from .migrations import upgrade_table
from .store import WebhookStore
from .web import WebhookWebApp


class WebhookAppService(Program):
    module = "appservice_webhooks"
    name = "matrix-appservice-webhooks"
    command = "python -m appservice_webhooks"
    description = "Matrix appservice for slack-like webhooks"
    version = __version__

    config_class = Config
    config: Config

    db: Database
    az: AppService
    http: aiohttp.ClientSession
    host: MatrixHost
    store: WebhookStore
    bot: WebhookBot

    def prepare_arg_parser(self) -> None:
        super().prepare_arg_parser()
        self.parser.add_argument(
            "-g", "--generate-registration", action="store_true",
            help="generate registration and quit",
        )
        self.parser.add_argument(
            "-r", "--registration", type=str, default="registration.yaml", metavar="<path>",
            help="the path to save the generated registration to (not needed for running)",
        )

    def preinit(self) -> None:
        super().preinit()
        if self.args.generate_registration:
            self.generate_registration()
            sys.exit(0)

    def generate_registration(self) -> None:
        registration = self.config.generate_registration()
        self.config.save()
        with open(self.args.registration, "w") as outfile:
            YAML().dump(registration, outfile)
        print(f"Registration generated and saved to {self.args.registration}")

    def prepare(self) -> None:
        super().prepare()
        self.db = Database.create(
            self.config["appservice.database"],
            upgrade_table=upgrade_table,
            db_args=self.config["appservice.database_opts"],
            owner_name=self.name,
        )
        self.az = AppService(
            server=self.config["homeserver.address"],
            domain=self.config["homeserver.domain"],
            verify_ssl=self.config["homeserver.verify_ssl"],
            id=self.config["appservice.id"],
            as_token=self.config["appservice.as_token"],
            hs_token=self.config["appservice.hs_token"],
            bot_localpart=self.config.bot_localpart,
            log="webhooks.as",
        )
        self.host = MatrixHost(self.az, self.config["homeserver.domain"], self.config.bot_localpart)
        self.store = WebhookStore(self.db)

    async def start(self) -> None:
        await self.db.start()
        self.http = aiohttp.ClientSession()
        provisioner = IdentityProvisioner(
            self.host, self.http, fetch_timeout=self.config["web.avatar_fetch_timeout"]
        )
        self.bot = WebhookBot(self.config, self.store, self.host, provisioner)
        delivery = WebhookDelivery(self.store, self.host, provisioner, self.config.bot_localpart)
        WebhookWebApp(
            delivery, self.config["web.path_prefix"], self.config["web.max_body_bytes"]
        ).register(self.az.app)
        self.az.matrix_event_handler(self.bot.handle_event)

        self.log.info("Starting appservice")
        await self.az.start(self.config["appservice.hostname"], self.config["appservice.port"])
        await self.bot.start()
        self.az.ready = True
        await super().start()

    async def stop(self) -> None:
        await super().stop()
        await self.az.stop()
        await self.http.close()
        await self.db.stop()


WebhookAppService().run()
