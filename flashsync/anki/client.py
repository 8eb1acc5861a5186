"""AnkiConnect HTTP client."""

import logging
from typing import Any, Optional

import httpx

from ..constants import ANKICONNECT_VERSION, DEFAULT_ANKI_URL
from ..exceptions import AnkiConnectError, AnkiConnectionError

logger = logging.getLogger(__name__)


class AnkiConnectClient:
    """Client for Anki's AnkiConnect add-on.

    Example:
        >>> with AnkiConnectClient() as client:
        ...     client.invoke("deckNames")
    """

    def __init__(
        self,
        url: str = DEFAULT_ANKI_URL,
        timeout: float = 30.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        """Initialize the client.

        Args:
            url: URL of the AnkiConnect server.
            timeout: Request timeout in seconds.
            http_client: Preconfigured httpx client, mostly for tests.
        """
        self.url = url
        self.client = http_client or httpx.Client(timeout=timeout)

    def invoke(self, action: str, **params: Any) -> Any:
        """Invoke an AnkiConnect action.

        Args:
            action: The AnkiConnect action name.
            **params: Parameters to pass to the action.

        Returns:
            The result from AnkiConnect. For ``multi`` this is the list of
            per-action ``{result, error}`` elements.

        Raises:
            AnkiConnectionError: If Anki cannot be reached.
            AnkiConnectError: If the request fails or returns an error.
        """
        payload: dict = {"action": action, "version": ANKICONNECT_VERSION}
        if params:
            payload["params"] = params
        logger.debug(f"AnkiConnect request: {action}")

        try:
            response = self.client.post(self.url, json=payload)
            response.raise_for_status()
            result = response.json()
        except httpx.ConnectError as e:
            raise AnkiConnectionError(
                "Cannot connect to AnkiConnect. Make sure Anki is running "
                "and the AnkiConnect add-on is installed.",
                original_exception=e,
            ) from e
        except httpx.TimeoutException as e:
            raise AnkiConnectError(
                "AnkiConnect request timed out.", original_exception=e
            ) from e
        except httpx.HTTPStatusError as e:
            raise AnkiConnectError(
                f"HTTP error: {e.response.status_code}", original_exception=e
            ) from e
        except ValueError as e:
            raise AnkiConnectError(
                f"AnkiConnect returned invalid JSON for '{action}'",
                original_exception=e,
            ) from e

        if not isinstance(result, dict) or set(result) != {"result", "error"}:
            raise AnkiConnectError(
                f"Unexpected AnkiConnect response for '{action}': {result!r}"
            )
        if result["error"] is not None:
            raise AnkiConnectError(f"{action}: {result['error']}")
        return result["result"]

    def check_connection(self) -> int:
        """Return the AnkiConnect version, raising AnkiConnectionError if
        Anki is unreachable."""
        try:
            return self.invoke("version")
        except AnkiConnectionError:
            raise
        except AnkiConnectError as e:
            raise AnkiConnectionError(
                f"AnkiConnect at {self.url} is not usable: {e}",
                original_exception=e,
            ) from e

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "AnkiConnectClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
