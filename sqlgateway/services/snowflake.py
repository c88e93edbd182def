import asyncio
import httpx
from typing import Any, Dict, Optional

from sqlgateway.auth.credentials import Credentials, load_credentials
from sqlgateway.auth.keypair_auth import SnowflakeKeyPair
from sqlgateway.config.logging_config import logger
from sqlgateway.config.settings import Settings, settings as default_settings
from sqlgateway.errors import (
    ConfigurationError,
    FINGERPRINT_HINT,
    INVALID_JWT_MARKER,
    InvalidQueryError,
    PollCancelledError,
    PollTimeoutError,
    UpstreamAuthError,
    UpstreamHTTPError,
)
from sqlgateway.models.schemas import PollState, PollStatus, StatementRequest, StatementResult
from sqlgateway.services.result import has_data, normalize_result

# Poll responses that can never turn into a result: auth revoked, unknown
# handle, or the statement itself failed.
POLL_ABORT_STATUSES = frozenset({401, 403, 404, 410, 422})
AUTH_STATUSES = frozenset({401, 403})


class SnowflakeService:
    """Runs one SQL statement through the Snowflake SQL API.

    Nothing is shared between executions: a new JWT is signed for every call
    and, unless a client is injected, a new ``httpx.AsyncClient`` is opened
    and closed around it.
    """

    def __init__(
        self,
        credentials: Credentials,
        config: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        config = config or default_settings
        self.credentials = credentials
        self.base_url = (
            config.sf_base_url or f"https://{credentials.account}.snowflakecomputing.com"
        ).rstrip("/")
        self.statements_url = f"{self.base_url}/api/v2/statements"

        self.statement_timeout = config.statement_timeout
        self.http_timeout = config.http_timeout
        self.poll_interval = config.poll_interval
        if config.poll_max_attempts < 1:
            raise ConfigurationError(
                f"POLL_MAX_ATTEMPTS must be at least 1, got {config.poll_max_attempts}"
            )
        if config.poll_interval < 0:
            raise ConfigurationError(f"POLL_INTERVAL must not be negative, got {config.poll_interval}")
        self.poll_max_attempts = config.poll_max_attempts
        self.cancel_on_timeout = config.cancel_on_timeout

        self.client = client
        self.auth_client = SnowflakeKeyPair(credentials)

    @classmethod
    def from_settings(
        cls, config: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None
    ) -> "SnowflakeService":
        return cls(load_credentials(config), config=config, client=client)

    async def execute_sql(
        self, sql_query: str, cancel_event: Optional[asyncio.Event] = None
    ) -> StatementResult:
        """Execute SQL via the SQL API, polling the statement handle if needed.

        ``cancel_event`` lets the caller abandon polling early; setting it
        raises ``PollCancelledError`` instead of waiting out the attempt budget.
        """
        if not isinstance(sql_query, str) or not sql_query:
            raise InvalidQueryError("SQL query is required")

        token = self.auth_client.create_jwt_token()
        headers = self.auth_client.get_auth_headers(token)
        request = StatementRequest(
            statement=sql_query,
            timeout=self.statement_timeout,
            database=self.credentials.database,
            schema=self.credentials.schema_,
            warehouse=self.credentials.warehouse,
            role=self.credentials.role,
        )

        if self.client is not None:
            return await self._execute(self.client, request, headers, cancel_event)

        async with httpx.AsyncClient(timeout=self.http_timeout) as client:
            return await self._execute(client, request, headers, cancel_event)

    async def _execute(
        self,
        client: httpx.AsyncClient,
        request: StatementRequest,
        headers: Dict[str, str],
        cancel_event: Optional[asyncio.Event],
    ) -> StatementResult:
        result = await self._submit(client, request, headers)

        if has_data(result):
            logger.debug("Statement completed synchronously")
            return normalize_result(result)

        handle = result.get("statementHandle")
        if not handle:
            logger.warning("Snowflake response carried neither data nor a statement handle")
            return normalize_result(result)

        result = await self._poll_for_result(client, handle, headers, cancel_event)
        return normalize_result(result)

    async def _submit(
        self, client: httpx.AsyncClient, request: StatementRequest, headers: Dict[str, str]
    ) -> Dict[str, Any]:
        logger.info(f"Submitting statement to {self.statements_url}")
        try:
            response = await client.post(
                self.statements_url, json=request.to_payload(), headers=headers
            )
        except httpx.RequestError as e:
            logger.error(f"Could not reach Snowflake at {self.base_url}: {e}")
            raise UpstreamHTTPError(f"Could not reach Snowflake at {self.base_url}: {e}")

        logger.info(f"Snowflake responded {response.status_code} to statement submission")
        if not response.is_success:
            raise self._upstream_error(response)
        return self._json(response)

    def _upstream_error(self, response: httpx.Response) -> UpstreamHTTPError:
        detail = response.text
        hint = None
        if INVALID_JWT_MARKER in detail:
            hint = FINGERPRINT_HINT
            logger.error(
                f"{INVALID_JWT_MARKER}: {FINGERPRINT_HINT} "
                f"Fingerprint sent: {self.auth_client.public_key_fp}"
            )

        error_cls = UpstreamHTTPError
        if hint or response.status_code in AUTH_STATUSES:
            error_cls = UpstreamAuthError
        return error_cls(
            f"Snowflake API error: {response.status_code} - {detail}",
            status=response.status_code,
            detail=detail,
            hint=hint,
        )

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            raise UpstreamHTTPError(
                f"Snowflake returned a non-JSON response ({response.status_code})",
                status=response.status_code,
                detail=response.text,
            )
        if not isinstance(payload, dict):
            raise UpstreamHTTPError(
                "Snowflake returned an unexpected response body",
                status=response.status_code,
                detail=response.text,
            )
        return payload

    async def _poll_for_result(
        self,
        client: httpx.AsyncClient,
        handle: str,
        headers: Dict[str, str],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, Any]:
        """Poll the statement handle until data arrives or the attempt budget runs out."""
        state = PollState(
            handle=handle,
            interval=self.poll_interval,
            max_attempts=self.poll_max_attempts,
            status=PollStatus.PENDING,
        )
        status_url = f"{self.statements_url}/{handle}"
        logger.info(
            f"Statement {handle} pending; polling up to {state.max_attempts} times "
            f"every {state.interval}s"
        )

        while not state.exhausted:
            if state.attempt > 0:
                cancelled = await self._wait(state.interval, cancel_event)
            else:
                cancelled = cancel_event is not None and cancel_event.is_set()
            if cancelled:
                state.status = PollStatus.CANCELLED
                logger.warning(f"Polling for {handle} cancelled after {state.attempt} attempts")
                await self._cancel_query(client, handle, headers)
                raise PollCancelledError(handle, state.attempt)

            state.attempt += 1
            payload = await self._poll_once(client, status_url, headers, state)
            if payload is not None:
                state.status = PollStatus.COMPLETE
                logger.info(f"Statement {handle} completed on poll {state.attempt}")
                return payload

        state.status = PollStatus.TIMED_OUT
        logger.error(f"Statement {handle} still not ready after {state.attempt} polls")
        if self.cancel_on_timeout:
            await self._cancel_query(client, handle, headers)
        raise PollTimeoutError(handle, state.attempt)

    @staticmethod
    async def _wait(interval: float, cancel_event: Optional[asyncio.Event]) -> bool:
        """Sleep for one poll interval; True if the caller cancelled meanwhile."""
        if cancel_event is None:
            await asyncio.sleep(interval)
            return False
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            return False
        return True

    async def _poll_once(
        self,
        client: httpx.AsyncClient,
        status_url: str,
        headers: Dict[str, str],
        state: PollState,
    ) -> Optional[Dict[str, Any]]:
        progress = f"{state.attempt}/{state.max_attempts}"
        try:
            response = await client.get(status_url, headers=headers)
        except httpx.RequestError as e:
            logger.warning(f"Poll {progress} for {state.handle} could not reach Snowflake: {e}")
            return None

        if response.status_code in POLL_ABORT_STATUSES:
            logger.error(
                f"Poll {progress} for {state.handle} returned {response.status_code}; giving up"
            )
            raise self._upstream_error(response)

        if not response.is_success:
            logger.debug(f"Poll {progress} for {state.handle}: not ready ({response.status_code})")
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.debug(f"Poll {progress} for {state.handle}: unparseable body")
            return None

        if isinstance(payload, dict) and has_data(payload):
            return payload

        logger.debug(f"Poll {progress} for {state.handle}: not ready ({response.status_code})")
        return None

    async def _cancel_query(
        self, client: httpx.AsyncClient, handle: str, headers: Dict[str, str]
    ) -> None:
        """Attempt to cancel a running statement."""
        cancel_url = f"{self.statements_url}/{handle}/cancel"
        try:
            await client.post(cancel_url, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Failed to cancel statement {handle}: {e}")
