"""
Board Document Shape

The stored board is a JSON object with a top-level "projects" list plus arbitrary
nested structure. Older rows hold a bare list of projects. Every read path goes
through normalize_document() so the rest of the code only sees the object form.
"""

import copy
import json
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from typing import Any
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional
from typing import Union

from loguru import logger

from boardstate_api.enums import ActionType
from boardstate_api.errors import StateValidationError

PROJECTS_KEY = "projects"
VERSION_KEY = "version"
ENTITY_ID_KEY = "id"


@dataclass(frozen=True)
class LegacyArrayForm:
    """Document stored as a bare list of projects."""

    projects: List[Any]


@dataclass(frozen=True)
class NormalizedForm:
    """Document stored as an object."""

    body: Dict[str, Any]


DocumentForm = Union[LegacyArrayForm, NormalizedForm]


@dataclass
class VersionedDocument:
    """A normalized document together with the version that guards it."""

    document: Dict[str, Any]
    version: int
    updated_at: Optional[datetime] = None

    def to_payload(self) -> Dict[str, Any]:
        """Wire form: the document fields plus "version"."""
        payload = copy.deepcopy(self.document)
        payload[VERSION_KEY] = self.version
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "VersionedDocument":
        return cls(document=normalize_document(payload), version=int(payload[VERSION_KEY]))


@dataclass
class EntityChange:
    """One project that differs between two documents."""

    entity_id: str
    action_type: ActionType
    payload: Dict[str, Any] = field(default_factory=dict)
    snapshot_after: Optional[Dict[str, Any]] = None


def classify_document(raw: Any) -> DocumentForm:
    """
    Tag a raw stored or submitted document with its shape.

    Args:
        raw: Decoded JSON value, or a JSON string as stored by older deployments

    Raises:
        StateValidationError: If the value is neither an object nor a list
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StateValidationError(f"Board document is not valid JSON: {e}")

    if isinstance(raw, list):
        return LegacyArrayForm(projects=raw)
    if isinstance(raw, dict):
        return NormalizedForm(body=raw)

    raise StateValidationError(f"Board document must be an object or a list of projects, got {type(raw).__name__}")


def normalize_document(raw: Any) -> Optional[Dict[str, Any]]:
    """
    Normalize any accepted document shape into the object form.

    - None stays None (no document)
    - [p1, p2] becomes {"projects": [p1, p2]}
    - An object without "projects" gets an empty list
    - A "version" key is dropped: the version column is authoritative

    The result is a deep copy; callers may mutate it freely.

    Raises:
        StateValidationError: If "projects" is present but not a list
    """
    if raw is None:
        return None

    form = classify_document(raw)

    if isinstance(form, LegacyArrayForm):
        return {PROJECTS_KEY: copy.deepcopy(form.projects)}

    body = {key: copy.deepcopy(value) for key, value in form.body.items() if key != VERSION_KEY}
    projects = body.get(PROJECTS_KEY)
    if projects is None:
        body[PROJECTS_KEY] = []
    elif not isinstance(projects, list):
        raise StateValidationError(f"'{PROJECTS_KEY}' must be a list, got {type(projects).__name__}")
    return body


def empty_document() -> Dict[str, Any]:
    return {PROJECTS_KEY: []}


def entity_key(project: Any) -> Optional[str]:
    """Identity of a project inside the collection, or None when it cannot be tracked."""
    if not isinstance(project, dict):
        return None
    entity_id = project.get(ENTITY_ID_KEY)
    if entity_id is None or entity_id == "":
        return None
    return str(entity_id)


def index_entities(document: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Map entity id -> project for every trackable project in the document."""
    if not document:
        return {}
    indexed: Dict[str, Dict[str, Any]] = {}
    for project in document.get(PROJECTS_KEY, []):
        key = entity_key(project)
        if key is not None:
            indexed[key] = project
    return indexed


def find_entity(document: Optional[Dict[str, Any]], entity_id: str) -> Optional[Dict[str, Any]]:
    return index_entities(document).get(str(entity_id))


def _changed_fields(previous: Dict[str, Any], current: Dict[str, Any]) -> List[str]:
    keys = set(previous) | set(current)
    return sorted(key for key in keys if previous.get(key) != current.get(key) or (key in previous) != (key in current))


def diff_entities(previous: Optional[Dict[str, Any]], current: Dict[str, Any]) -> List[EntityChange]:
    """
    Compute per-project changes between two normalized documents.

    Creates and updates come in the order of the new document, deletes follow in the
    order of the old one. Projects without an "id" are not tracked.

    Returns:
        List of EntityChange (empty when no tracked project changed)
    """
    before = index_entities(previous)
    after = index_entities(current)
    changes: List[EntityChange] = []

    for entity_id, project in after.items():
        old = before.get(entity_id)
        if old is None:
            changes.append(
                EntityChange(
                    entity_id=entity_id,
                    action_type=ActionType.CREATE,
                    payload={"name": project.get("name")},
                    snapshot_after=copy.deepcopy(project),
                )
            )
        elif old != project:
            changes.append(
                EntityChange(
                    entity_id=entity_id,
                    action_type=ActionType.UPDATE,
                    payload={"changed_fields": _changed_fields(old, project)},
                    snapshot_after=copy.deepcopy(project),
                )
            )

    for entity_id, project in before.items():
        if entity_id not in after:
            changes.append(
                EntityChange(
                    entity_id=entity_id,
                    action_type=ActionType.DELETE,
                    payload={"name": project.get("name")},
                    snapshot_after=None,
                )
            )

    return changes


def as_restore_changes(changes: Iterable[EntityChange], **reference: Any) -> List[EntityChange]:
    """Re-label diff results as restores, keeping the original action in the payload."""
    return [
        EntityChange(
            entity_id=change.entity_id,
            action_type=ActionType.RESTORE,
            payload={**change.payload, "restored_action": change.action_type.value, **reference},
            snapshot_after=change.snapshot_after,
        )
        for change in changes
    ]


def replace_entity(document: Dict[str, Any], entity_id: str, snapshot: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of the document with the project replaced in place, or appended when absent."""
    result = normalize_document(document)
    projects = result[PROJECTS_KEY]
    for index, project in enumerate(projects):
        if entity_key(project) == str(entity_id):
            projects[index] = copy.deepcopy(snapshot)
            return result
    projects.append(copy.deepcopy(snapshot))
    return result


def remove_entity(document: Dict[str, Any], entity_id: str) -> Dict[str, Any]:
    """Return a copy of the document without the project."""
    result = normalize_document(document)
    result[PROJECTS_KEY] = [project for project in result[PROJECTS_KEY] if entity_key(project) != str(entity_id)]
    return result


def replay_events(events: Iterable[Dict[str, Any]]) -> List[VersionedDocument]:
    """
    Fold ledger events (oldest first) into the sequence of document versions they produced.

    Each ledger event carries the full next document, so folding keeps the latest one per
    version. Events whose version does not move forward are skipped with a warning.
    """
    history: List[VersionedDocument] = []
    last_version = -1
    for event in events:
        version = event.get("version")
        if version is None or version <= last_version:
            logger.warning(
                "Skipping out-of-order ledger event during replay",
                event_id=event.get("id"),
                version=version,
                last_version=last_version,
            )
            continue
        history.append(
            VersionedDocument(
                document=normalize_document(event.get("data")) or empty_document(),
                version=version,
                updated_at=event.get("created_at"),
            )
        )
        last_version = version
    return history
