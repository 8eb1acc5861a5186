"""
Decides which documents need to be scanned in a pass.
"""

import logging
from typing import Iterable, List

from .models import Document, SyncState, fingerprint

logger = logging.getLogger(__name__)

__all__ = ["fingerprint", "should_scan", "filter_changed"]


def should_scan(document: Document, state: SyncState) -> bool:
    """True iff the document has no stored fingerprint or its text changed
    since the fingerprint was recorded."""
    stored = state.fingerprints.get(document.path)
    return stored is None or stored != document.fingerprint


def filter_changed(
    documents: Iterable[Document], state: SyncState
) -> List[Document]:
    changed = [d for d in documents if should_scan(d, state)]
    logger.info(f"{len(changed)} document(s) changed since the last sync")
    return changed
