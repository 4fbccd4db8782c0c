import json
import logging

from aiohttp import web

from .delivery import WebhookDelivery
from .errors import NotFoundError, ValidationError, WebhookError
from .payload import WebhookPayload


class PayloadTooLarge(ValidationError):
    pass


def clamp_body(req: web.Request, max_bytes: int) -> None:
    if max_bytes and req.content_length and req.content_length > max_bytes:
        raise PayloadTooLarge("payload_too_large")


class WebhookWebApp:
    def __init__(self, delivery: WebhookDelivery, path_prefix: str, max_body_bytes: int = 0) -> None:
        self.delivery = delivery
        self.path_prefix = path_prefix.rstrip("/")
        self.max_body_bytes = max_body_bytes
        self.log = logging.getLogger("webhooks.web")

    def register(self, app: web.Application) -> None:
        app.router.add_post(f"{self.path_prefix}/hook/{{webhook_id}}", self.handle_hook)

    async def _parse_body(self, req: web.Request) -> WebhookPayload:
        clamp_body(req, self.max_body_bytes)
        raw = await req.read()
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationError(f"Invalid JSON body: {e}") from e
        return WebhookPayload.from_json(data)

    async def handle_hook(self, req: web.Request) -> web.Response:
        webhook_id = req.match_info["webhook_id"]
        self.log.debug(f"Received webhook for id {webhook_id[:6]}…")
        try:
            payload = await self._parse_body(req)
            await self.delivery.deliver(webhook_id, payload)
        except WebhookError as e:
            self.log.error(f"Error responding to webhook request with id {webhook_id[:6]}…: {e}")
            return self._err_to_resp(e)
        except Exception as e:
            self.log.exception(f"Unexpected error responding to webhook request with id {webhook_id[:6]}…")
            return self._err_to_resp(e)
        return web.json_response({"success": True})

    def _err_to_resp(self, err: Exception) -> web.Response:
        if isinstance(err, PayloadTooLarge):
            status = 413
        elif isinstance(err, ValidationError):
            status = 400
        elif isinstance(err, NotFoundError):
            status = 404
        else:
            status = 500
        return web.json_response({"success": False, "message": str(err)}, status=status)
