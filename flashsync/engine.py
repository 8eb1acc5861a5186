"""
One complete sync pass over a vault.
"""

import logging
from typing import Optional, Tuple

from .anki import actions
from .change_detector import filter_changed
from .exceptions import AnkiConnectError, AnkiConnectionError
from .interfaces import AnkiTransport, DocumentSource, StateStore
from .models import SchemaRegistry, SyncReport, SyncState
from .reconciler import SyncReconciler
from .scanner import DocumentScanner
from .settings_models import SyncSettings, compile_settings

logger = logging.getLogger(__name__)


class SyncEngine:
    """
    Wires the vault, AnkiConnect and the state store together.

    A pass either completes and saves the new state once, or raises and
    leaves the stored state untouched.
    """

    def __init__(
        self,
        transport: AnkiTransport,
        source: DocumentSource,
        store: StateStore,
        settings: Optional[SyncSettings] = None,
    ):
        self.transport = transport
        self.source = source
        self.store = store
        self.settings = settings or SyncSettings()

    def check_connection(self) -> None:
        try:
            self.transport.invoke("version")
        except AnkiConnectionError:
            raise
        except AnkiConnectError as e:
            raise AnkiConnectionError(
                f"Failed to connect to Anki: {e}", original_exception=e
            ) from e

    def load_registry(self, refresh: bool = False) -> SchemaRegistry:
        """Return the cached schema registry, fetching it from Anki when the
        cache is empty or ``refresh`` is set."""
        registry = {} if refresh else self.store.load_registry()
        if not registry:
            registry = actions.fetch_registry(self.transport)
            self.store.save_registry(registry)
        return registry

    def run(self, state: Optional[SyncState] = None) -> Tuple[SyncReport, SyncState]:
        """
        Run one sync pass.

        Parameters:
            state (Optional[SyncState]): State of the previous pass; loaded from the store when omitted.

        Returns:
            Tuple[SyncReport, SyncState]: What the pass did, and the state after it.

        Raises:
            AnkiConnectionError: If Anki cannot be reached. Nothing is scanned, written or saved.
        """
        self.check_connection()
        if state is None:
            state = self.store.load()
        registry = self.load_registry()
        existing_ids = set(actions.existing_note_ids(self.transport))
        parsed = compile_settings(self.settings, registry)

        changed = filter_changed(self.source.list_documents(), state)
        if not changed:
            logger.info("All documents are up to date")
            return SyncReport(), state

        scanner = DocumentScanner(parsed, url_for=self.source.url_for)
        scanned = [scanner.scan(document) for document in changed]
        reconciler = SyncReconciler(
            self.transport, scanner, self.source, existing_ids=existing_ids
        )
        report, delta = reconciler.reconcile(scanned, state)

        new_state = state.apply(delta)
        if not delta.is_empty:
            self.store.save(new_state)
        logger.info(
            f"Sync finished: {report.created} created, {report.updated} updated, "
            f"{report.deleted} deleted, {report.failed} failed"
        )
        return report, new_state
