"""Gateway error taxonomy — each error carries the HTTP status it maps to."""


class GatewayError(Exception):
    """Base for every failure the gateway reports to a caller."""

    status = 500
    default_message = "Internal error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


# ── Caller errors (400) ───────────────────────────────────────

class InvalidClient(GatewayError):
    status = 400
    default_message = "Bad user-agent received (not Willow)."


class MissingStreamMetadata(GatewayError):
    status = 400
    default_message = "Bad header data received."


class UnsupportedCodec(GatewayError):
    status = 400
    default_message = "Only PCM codec accepted."


class PayloadLengthMismatch(GatewayError):
    status = 400
    default_message = "Body length does not match content-length."


class EmptyInput(GatewayError):
    status = 400
    default_message = "Missing required parameter: text"


# ── Backend errors (500) ──────────────────────────────────────

class BackendUnavailable(GatewayError):
    """A downstream speech service failed, timed out, or replied with garbage."""

    status = 500
    default_message = "Backend unavailable"
