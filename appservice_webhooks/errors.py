class WebhookError(Exception):
    """Base class for every failure the appservice reports to a caller."""


class NotFoundError(WebhookError):
    """Unknown webhook id, or a room the bot was expected to be in."""


class UpstreamProtocolError(WebhookError):
    """A homeserver API call failed."""


class AvatarFetchError(WebhookError):
    """The avatar could not be downloaded or uploaded. Never fatal."""


class StorageError(WebhookError):
    """The database failed to read or write a webhook."""


class ValidationError(WebhookError):
    """The inbound webhook payload is malformed."""
