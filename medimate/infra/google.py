"""
Google API access

Builds service-account authorized clients for Sheets and Calendar and runs
their blocking requests off the event loop, retrying rate limits and
server errors with exponential backoff. Writes that would duplicate data
when replayed are only retried after a rate-limit refusal.
"""

import asyncio
import logging
import threading
from typing import Any, Callable, Iterable, Optional

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from medimate.core.scheduling.errors import ExternalServiceError

logger = logging.getLogger(__name__)

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar"]

TOKEN_URI = "https://oauth2.googleapis.com/token"

# HTTP statuses worth retrying
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def build_credentials(
    client_email: str,
    private_key: str,
    scopes: list[str],
) -> service_account.Credentials:
    """
    Create service-account credentials from an email and PEM key.

    Args:
        client_email: Service account email
        private_key: PEM private key (newlines already restored)
        scopes: OAuth scopes

    Returns:
        Credentials

    Raises:
        ExternalServiceError: Credentials are missing or malformed
    """
    if not client_email or not private_key:
        raise ExternalServiceError("google", "service account email and private key are required")

    info = {
        "type": "service_account",
        "client_email": client_email,
        "private_key": private_key,
        "token_uri": TOKEN_URI,
    }
    try:
        return service_account.Credentials.from_service_account_info(info, scopes=scopes)
    except ValueError as e:
        raise ExternalServiceError("google", f"invalid service account key: {e}") from e


class GoogleService:
    """
    Lazily built Google API resource with retried, thread-offloaded calls.

    googleapiclient's transport is not thread-safe, so requests against one
    resource are serialized with a lock inside the worker thread.
    """

    def __init__(
        self,
        name: str,
        factory: Callable[[], Any],
        max_attempts: int = 3,
        base_delay: float = 0.5,
    ):
        """Initialize service.

        Args:
            name: Service label for logs and errors ("sheets", "calendar")
            factory: Builds the API resource on first use
            max_attempts: Attempts per call (including the first)
            base_delay: First backoff delay in seconds
        """
        self.name = name
        self._factory = factory
        self._resource: Optional[Any] = None
        self._lock = threading.Lock()
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    @classmethod
    def for_api(
        cls,
        name: str,
        api: str,
        version: str,
        client_email: str,
        private_key: str,
        scopes: list[str],
    ) -> "GoogleService":
        """Service backed by googleapiclient.discovery.build."""

        def factory() -> Any:
            credentials = build_credentials(client_email, private_key, scopes)
            return build(api, version, credentials=credentials, cache_discovery=False)

        return cls(name, factory)

    def _run(self, make_request: Callable[[Any], Any]) -> Any:
        with self._lock:
            if self._resource is None:
                self._resource = self._factory()
            return make_request(self._resource).execute()

    async def execute(
        self,
        make_request: Callable[[Any], Any],
        operation: str,
        ok_statuses: Iterable[int] = (),
        idempotent: bool = True,
    ) -> Any:
        """
        Build and execute one request.

        Args:
            make_request: Given the API resource, returns an HttpRequest
            operation: Label for logs ("append_row", "delete_event", ...)
            ok_statuses: HTTP error statuses treated as success (returns None)
            idempotent: False for writes that must not be replayed. Only 429
                (the request was refused, not applied) is retried for them.

        Returns:
            Parsed response body

        Raises:
            ExternalServiceError: After the final failed attempt
        """
        ok = set(ok_statuses)

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await asyncio.to_thread(self._run, make_request)

            except HttpError as e:
                status = e.resp.status
                if status in ok:
                    logger.info(f"{self.name}.{operation}: status {status} treated as success")
                    return None
                retryable = status in RETRYABLE_STATUS if idempotent else status == 429
                if retryable and attempt < self.max_attempts:
                    wait_time = self.base_delay * 2 ** (attempt - 1)
                    logger.warning(
                        f"{self.name}.{operation} got {status}, retrying in {wait_time}s "
                        f"(attempt {attempt})"
                    )
                    await asyncio.sleep(wait_time)
                    continue
                logger.error(f"{self.name}.{operation} failed with status {status}: {e}")
                raise ExternalServiceError(self.name, f"{operation} failed ({status})") from e

            except (GoogleAuthError, OSError) as e:
                if idempotent and attempt < self.max_attempts:
                    wait_time = self.base_delay * 2 ** (attempt - 1)
                    logger.warning(
                        f"{self.name}.{operation} transport error, retrying in {wait_time}s "
                        f"(attempt {attempt}): {e}"
                    )
                    await asyncio.sleep(wait_time)
                    continue
                logger.error(f"{self.name}.{operation} failed: {e}")
                raise ExternalServiceError(self.name, f"{operation} failed: {e}") from e

        raise ExternalServiceError(self.name, f"{operation} failed")
