"""AnkiConnect access: request builders and the HTTP client."""

from . import actions
from .client import AnkiConnectClient

__all__ = ["actions", "AnkiConnectClient"]
