"""
Turns scanned documents into batched AnkiConnect requests and merges the
responses back into documents and sync state.

Every sub-request is tagged with a ``CorrelationKey`` naming the document and
note it belongs to, so responses are matched to notes by key rather than by
position alone.
"""

import logging
import posixpath
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from .anki import actions
from .exceptions import DocumentWriteError, RemoteOperationError, ResponseShapeError
from .interfaces import AnkiTransport, DocumentSource
from .models import ParsedNote, SyncReport, SyncState, SyncStateDelta, fingerprint
from .scanner import DocumentScanner, ScannedDocument

logger = logging.getLogger(__name__)

LEGACY_RESPONSE_WARNING = (
    "AnkiConnect returned responses without result/error envelopes. "
    "Please update AnkiConnect."
)


@dataclass(frozen=True)
class CorrelationKey:
    """Identifies the origin of one sub-request: a note of a document, or
    a media link (``index`` -1) referenced from it."""

    path: str
    index: int
    ref: str = ""


@dataclass
class RequestEnvelope:
    """An ordered group of sub-requests and their correlation keys."""

    label: str
    keys: List[CorrelationKey] = field(default_factory=list)
    requests: List[actions.Request] = field(default_factory=list)

    def add(self, key: CorrelationKey, request: actions.Request) -> None:
        self.keys.append(key)
        self.requests.append(request)

    def __len__(self) -> int:
        return len(self.requests)

    def to_request(self) -> actions.Request:
        return actions.multi(self.requests)

    def match(self, response: Any) -> List[Tuple[CorrelationKey, Any]]:
        """Pair every key with its response element.

        Raises:
            ResponseShapeError: If the response is not a list of exactly one element per request.
        """
        items = actions.expect_list(response, len(self.keys), self.label)
        return list(zip(self.keys, items))


@dataclass
class _PassResults:
    identifiers: Dict[str, Dict[int, int]] = field(
        default_factory=lambda: defaultdict(dict)
    )
    deleted: Dict[str, Set[int]] = field(default_factory=lambda: defaultdict(set))
    card_ids: Dict[str, List[int]] = field(
        default_factory=lambda: defaultdict(list)
    )
    global_tags: List[str] = field(default_factory=list)
    failed_paths: Set[str] = field(default_factory=set)


class SyncReconciler:
    """
    Runs the remote half of a pass for a set of scanned documents.

    Parameters:
        transport (AnkiTransport): Where the batched requests are sent.
        scanner (DocumentScanner): Used to write identifiers back into documents.
        source (DocumentSource): Resolves media links and receives rewritten text.
        existing_ids (Optional[Set[int]]): Note ids present in Anki at pass start; notes claiming other ids are skipped. None disables the check.
    """

    def __init__(
        self,
        transport: AnkiTransport,
        scanner: DocumentScanner,
        source: DocumentSource,
        existing_ids: Optional[Set[int]] = None,
    ):
        self.transport = transport
        self.scanner = scanner
        self.source = source
        self.existing_ids = existing_ids

    def reconcile(
        self, documents: List[ScannedDocument], state: SyncState
    ) -> Tuple[SyncReport, SyncStateDelta]:
        report = SyncReport(scanned=[d.path for d in documents])
        delta = SyncStateDelta()
        for scanned in documents:
            report.warnings.extend(scanned.warnings)

        existing = self._existing_notes(documents, report)
        create, info, update, delete, media = self._first_batch(
            documents, existing, state, delta, report
        )
        results = _PassResults()
        groups = (create, info, update, delete, media)
        if any(len(g) for g in groups):
            self._invoke_first_batch(groups, results, report)
        else:
            logger.info("Nothing to send to Anki")

        written_text = self._write_back(documents, results, report)
        self._second_batch(documents, existing, results, report)

        for scanned in documents:
            if scanned.path in results.failed_paths:
                report.failed_documents.append(scanned.path)
                continue
            if scanned.path in written_text:
                delta.fingerprints[scanned.path] = fingerprint(
                    written_text[scanned.path]
                )
        return report, delta

    # ------------------------------------------------------------------
    # Request construction
    # ------------------------------------------------------------------

    def _existing_notes(
        self, documents: List[ScannedDocument], report: SyncReport
    ) -> Dict[str, List[Tuple[int, ParsedNote]]]:
        """Existing notes to update, per document path.

        Notes whose id is deleted in the same pass, or unknown to Anki, are
        left out.
        """
        deleting = {
            note.identifier
            for scanned in documents
            for _, note in scanned.delete_notes()
        }
        existing: Dict[str, List[Tuple[int, ParsedNote]]] = {}
        for scanned in documents:
            kept = []
            for index, note in scanned.existing_notes():
                if note.identifier in deleting:
                    continue
                if (
                    self.existing_ids is not None
                    and note.identifier not in self.existing_ids
                ):
                    self._warn(
                        report,
                        f"{scanned.path}: note ID {note.identifier} does not "
                        f"exist in Anki and was skipped",
                    )
                    continue
                kept.append((index, note))
            existing[scanned.path] = kept
        return existing

    def _first_batch(
        self,
        documents: List[ScannedDocument],
        existing: Dict[str, List[Tuple[int, ParsedNote]]],
        state: SyncState,
        delta: SyncStateDelta,
        report: SyncReport,
    ) -> Tuple[RequestEnvelope, ...]:
        create = RequestEnvelope("addNote")
        info = RequestEnvelope("notesInfo")
        update = RequestEnvelope("updateNoteFields")
        delete = RequestEnvelope("deleteNotes")
        media = RequestEnvelope("storeMediaFile")

        for scanned in documents:
            path = scanned.path
            for index, note in scanned.new_notes():
                create.add(
                    CorrelationKey(path, index), actions.add_note(note.to_anki_note())
                )
            for index, note in existing[path]:
                key = CorrelationKey(path, index)
                info.add(key, actions.notes_info([note.identifier]))
                update.add(
                    key, actions.update_note_fields(note.identifier, note.fields)
                )
            for index, note in scanned.delete_notes():
                delete.add(
                    CorrelationKey(path, index),
                    actions.delete_notes([note.identifier]),
                )
            for link in sorted(scanned.detected_media):
                if link in state.uploaded_media or link in delta.media_added:
                    continue
                resolved = self.source.resolve_media(link, path)
                if resolved is None:
                    self._warn(report, f"{path}: media file '{link}' not found")
                    continue
                media.add(
                    CorrelationKey(path, -1, link),
                    actions.store_media_file(
                        posixpath.basename(link), str(resolved)
                    ),
                )
                # Recorded before Anki confirms the upload.
                delta.media_added.add(link)

        for envelope in (create, info, update, delete, media):
            logger.debug(f"{envelope.label}: {len(envelope)} request(s)")
        return create, info, update, delete, media

    # ------------------------------------------------------------------
    # Response handling
    # ------------------------------------------------------------------

    def _invoke_first_batch(
        self,
        groups: Tuple[RequestEnvelope, ...],
        results: _PassResults,
        report: SyncReport,
    ) -> None:
        create, info, update, delete, media = groups
        batch = [
            create.to_request(),
            info.to_request(),
            actions.get_tags(),
            update.to_request(),
            delete.to_request(),
            media.to_request(),
        ]
        response = actions.expect_list(
            self.transport.invoke("multi", actions=batch), len(batch), "sync batch"
        )
        if response and not actions.is_wrapped(response[0]):
            self._warn(report, LEGACY_RESPONSE_WARNING)
        create_res, info_res, tags_res, update_res, delete_res, media_res = response

        for key, item in self._matched(create, create_res, results, report):
            try:
                identifier = actions.unwrap(item)
                if identifier is None:
                    raise RemoteOperationError("Anki did not return a note ID")
            except RemoteOperationError as e:
                self._fail(results, report, key, f"could not add note: {e}")
                continue
            results.identifiers[key.path][key.index] = int(identifier)
            report.created += 1

        for key, item in self._matched(info, info_res, results, report):
            try:
                notes = actions.unwrap(item) or []
            except RemoteOperationError as e:
                self._fail(results, report, key, f"could not fetch note info: {e}")
                continue
            for note_info in notes:
                if note_info:
                    results.card_ids[key.path].extend(note_info.get("cards", []))

        try:
            results.global_tags = list(actions.unwrap(tags_res) or [])
        except RemoteOperationError as e:
            self._warn(report, f"Could not fetch tags from Anki: {e}")

        for key, item in self._matched(update, update_res, results, report):
            try:
                actions.unwrap(item)
            except RemoteOperationError as e:
                self._fail(results, report, key, f"could not update note: {e}")
                continue
            report.updated += 1

        for key, item in self._matched(delete, delete_res, results, report):
            try:
                actions.unwrap(item)
            except RemoteOperationError as e:
                self._fail(results, report, key, f"could not delete note: {e}")
                continue
            results.deleted[key.path].add(key.index)
            report.deleted += 1

        for key, item in self._matched(media, media_res, results, report):
            try:
                actions.unwrap(item)
            except RemoteOperationError as e:
                self._warn(report, f"{key.path}: could not upload '{key.ref}': {e}")
                continue
            report.media_uploaded += 1

    def _matched(
        self,
        envelope: RequestEnvelope,
        response: Any,
        results: _PassResults,
        report: SyncReport,
    ) -> List[Tuple[CorrelationKey, Any]]:
        """Unwrap a group response and pair it with the group's keys.

        An error for the whole group fails every note in it.
        """
        if not len(envelope):
            return []
        try:
            items = actions.unwrap(response)
        except RemoteOperationError as e:
            for key in envelope.keys:
                if key.index >= 0:
                    self._fail(results, report, key, f"{envelope.label} failed: {e}")
                else:
                    self._warn(report, f"{key.path}: {envelope.label} failed: {e}")
            return []
        return envelope.match(items)

    def _write_back(
        self,
        documents: List[ScannedDocument],
        results: _PassResults,
        report: SyncReport,
    ) -> Dict[str, str]:
        """Rewrite documents with their new identifiers.

        Returns the final text of every document whose text is now
        persisted.
        """
        persisted: Dict[str, str] = {}
        for scanned in documents:
            path = scanned.path
            rewritten = self.scanner.rewrite(
                scanned,
                results.identifiers.get(path, {}),
                results.deleted.get(path, ()),
            )
            if not rewritten.changed:
                persisted[path] = rewritten.text
                continue
            try:
                self.source.write_text(path, rewritten.text)
            except DocumentWriteError as e:
                self._warn(report, str(e))
                results.failed_paths.add(path)
                continue
            report.written.append(path)
            persisted[path] = rewritten.text
        return persisted

    def _second_batch(
        self,
        documents: List[ScannedDocument],
        existing: Dict[str, List[Tuple[int, ParsedNote]]],
        results: _PassResults,
        report: SyncReport,
    ) -> None:
        """Move cards to their target deck and reset the tags of existing
        notes to the document's tags."""
        envelope = RequestEnvelope("deck and tag updates")
        removable = " ".join(results.global_tags)
        for scanned in documents:
            path = scanned.path
            notes = existing[path]
            if not notes:
                continue
            cards = results.card_ids.get(path)
            if cards:
                envelope.add(
                    CorrelationKey(path, -1, "changeDeck"),
                    actions.change_deck(cards, scanned.deck_name),
                )
            if removable:
                envelope.add(
                    CorrelationKey(path, -1, "removeTags"),
                    actions.remove_tags([n.identifier for _, n in notes], removable),
                )
            for index, note in notes:
                if note.tags:
                    envelope.add(
                        CorrelationKey(path, index),
                        actions.add_tags([note.identifier], " ".join(note.tags)),
                    )
        if not len(envelope):
            return

        logger.debug(f"{envelope.label}: {len(envelope)} request(s)")
        response = self.transport.invoke("multi", actions=envelope.requests)
        try:
            matched = envelope.match(response)
        except ResponseShapeError as e:
            # Identifiers are already in the text; the documents are rescanned next pass.
            for path in dict.fromkeys(key.path for key in envelope.keys):
                self._warn(report, f"{path}: {envelope.label} failed: {e}")
                results.failed_paths.add(path)
            return
        for key, item in matched:
            try:
                actions.unwrap(item)
            except RemoteOperationError as e:
                self._fail(
                    results,
                    report,
                    key,
                    f"{key.ref or 'addTags'} failed: {e}",
                    count=False,
                )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @staticmethod
    def _warn(report: SyncReport, message: str) -> None:
        logger.warning(message)
        report.warnings.append(message)

    def _fail(
        self,
        results: _PassResults,
        report: SyncReport,
        key: CorrelationKey,
        message: str,
        count: bool = True,
    ) -> None:
        """Record a failed sub-request; its document will be retried on the
        next pass."""
        location = key.path if key.index < 0 else f"{key.path} (note {key.index + 1})"
        self._warn(report, f"{location}: {message}")
        results.failed_paths.add(key.path)
        if count:
            report.failed += 1
