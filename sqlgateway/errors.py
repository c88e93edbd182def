from typing import Optional


INVALID_JWT_MARKER = "JWT_TOKEN_INVALID"

FINGERPRINT_HINT = (
    "Likely fingerprint/account/user mismatch or wrong key for this Snowflake user. "
    "Check DESCRIBE USER and SNOWFLAKE_PUBLIC_KEY_FP."
)


class GatewayError(Exception):
    """Base class for every failure surfaced by the SQL gateway."""

    status_code = 500


class ConfigurationError(GatewayError):
    pass


class KeyDecodeError(GatewayError):
    pass


class InvalidQueryError(GatewayError):
    status_code = 400


class UpstreamHTTPError(GatewayError):
    """Non-2xx response (or transport failure) from the Snowflake SQL API."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        detail: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        self.status = status
        self.detail = detail
        self.hint = hint
        if hint:
            message = f"{message} (hint: {hint})"
        super().__init__(message)


class UpstreamAuthError(UpstreamHTTPError):
    pass


class PollTimeoutError(GatewayError):
    def __init__(self, handle: str, attempts: int):
        self.handle = handle
        self.attempts = attempts
        super().__init__(
            f"Timed out waiting for Snowflake statement {handle} to complete "
            f"after {attempts} polling attempts."
        )


class PollCancelledError(GatewayError):
    def __init__(self, handle: str, attempts: int):
        self.handle = handle
        self.attempts = attempts
        super().__init__(
            f"Polling for Snowflake statement {handle} was cancelled "
            f"after {attempts} attempts."
        )
