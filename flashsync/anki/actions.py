"""
AnkiConnect request builders and response unwrapping.

Builders return plain request dicts so they can be batched into a ``multi``
call or sent on their own through a transport's ``invoke``.
"""

import logging
from typing import Any, Dict, List, Sequence

from ..constants import ANKICONNECT_VERSION
from ..exceptions import RemoteOperationError, ResponseShapeError
from ..interfaces import AnkiTransport
from ..models import SchemaRegistry

logger = logging.getLogger(__name__)

Request = Dict[str, Any]


def request(action: str, **params: Any) -> Request:
    return {"action": action, "version": ANKICONNECT_VERSION, "params": params}


def multi(actions: Sequence[Request]) -> Request:
    return request("multi", actions=list(actions))


def add_note(note: Dict[str, Any]) -> Request:
    return request("addNote", note=note)


def notes_info(identifiers: List[int]) -> Request:
    return request("notesInfo", notes=identifiers)


def get_tags() -> Request:
    return request("getTags")


def update_note_fields(identifier: int, fields: Dict[str, str]) -> Request:
    return request("updateNoteFields", note={"id": identifier, "fields": fields})


def delete_notes(identifiers: List[int]) -> Request:
    return request("deleteNotes", notes=identifiers)


def store_media_file(filename: str, path: str) -> Request:
    return request("storeMediaFile", filename=filename, path=path)


def change_deck(cards: List[int], deck: str) -> Request:
    return request("changeDeck", cards=cards, deck=deck)


def remove_tags(identifiers: List[int], tags: str) -> Request:
    return request("removeTags", notes=identifiers, tags=tags)


def add_tags(identifiers: List[int], tags: str) -> Request:
    return request("addTags", notes=identifiers, tags=tags)


def is_wrapped(item: Any) -> bool:
    """Whether a ``multi`` element uses the ``{result, error}`` envelope
    that AnkiConnect returns for versioned sub-requests."""
    return isinstance(item, dict) and set(item) == {"result", "error"}


def unwrap(item: Any) -> Any:
    """
    Extract the result of one ``multi`` element.

    Elements without the ``{result, error}`` envelope come from AnkiConnect
    releases that returned bare results and are passed through unchanged.

    Raises:
        RemoteOperationError: If the element carries an error.
    """
    if not is_wrapped(item):
        return item
    if item["error"] is not None:
        raise RemoteOperationError(str(item["error"]))
    return item["result"]


def expect_list(response: Any, expected: int, label: str) -> List[Any]:
    if not isinstance(response, list):
        raise ResponseShapeError(
            f"Expected a list response for {label}, got {type(response).__name__}"
        )
    if len(response) != expected:
        raise ResponseShapeError(
            f"{label}: sent {expected} request(s) but got {len(response)} response(s)"
        )
    return response


def fetch_registry(transport: AnkiTransport) -> SchemaRegistry:
    """Read every note type and its ordered field names from Anki."""
    names = sorted(transport.invoke("modelNames"))
    if not names:
        return {}
    responses = expect_list(
        transport.invoke(
            "multi",
            actions=[request("modelFieldNames", modelName=n) for n in names],
        ),
        len(names),
        "modelFieldNames",
    )
    registry: SchemaRegistry = {}
    for name, response in zip(names, responses):
        registry[name] = list(unwrap(response))
    logger.info(f"Fetched {len(registry)} note types from Anki")
    return registry


def existing_note_ids(transport: AnkiTransport) -> List[int]:
    """Identifiers of every note currently in the collection."""
    return list(transport.invoke("findNotes", query=""))
