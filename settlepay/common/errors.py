"""Error taxonomy translated to JSON responses at the HTTP boundary."""


class SettlementError(Exception):
    """Base error carrying the HTTP status and the message shown to callers."""

    status_code = 500
    public_message = "internal error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.public_message)
        self.detail = detail or self.public_message


class AuthenticationError(SettlementError):
    """Missing/invalid bearer token or webhook signature."""

    status_code = 401
    public_message = "authentication required"


class AuthorizationError(SettlementError):
    """Caller is authenticated but does not own the order."""

    status_code = 403
    public_message = "not allowed to access this order"


class NotFoundError(SettlementError):
    status_code = 404
    public_message = "not found"


class ValidationError(SettlementError):
    status_code = 400
    public_message = "invalid request"


class UpstreamGatewayError(SettlementError):
    """Gateway unreachable or returned a non-success response.

    `detail` holds the internal reason for logs; callers only ever see
    `public_message`.
    """

    status_code = 502
    public_message = "payment gateway unavailable"

    def __init__(self, detail: str | None = None, public_message: str | None = None) -> None:
        super().__init__(detail)
        if public_message is not None:
            self.public_message = public_message


class GatewayReferenceNotFound(UpstreamGatewayError):
    """The gateway has no charge recorded under the requested reference."""


def error_body(exc: SettlementError) -> dict:
    """JSON body for an error response; gateway internals are never exposed."""

    if isinstance(exc, UpstreamGatewayError):
        return {"error": exc.public_message}
    return {"error": exc.detail}
