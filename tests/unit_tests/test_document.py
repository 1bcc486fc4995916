"""Unit tests for store/document.py (shape normalization, project diff, replay)."""

import pytest

from boardstate_api.enums import ActionType
from boardstate_api.errors import StateValidationError
from boardstate_api.store.document import LegacyArrayForm
from boardstate_api.store.document import NormalizedForm
from boardstate_api.store.document import VersionedDocument
from boardstate_api.store.document import as_restore_changes
from boardstate_api.store.document import classify_document
from boardstate_api.store.document import diff_entities
from boardstate_api.store.document import find_entity
from boardstate_api.store.document import normalize_document
from boardstate_api.store.document import remove_entity
from boardstate_api.store.document import replace_entity
from boardstate_api.store.document import replay_events


class TestNormalizeDocument:
    """Tests for classify_document / normalize_document."""

    def test_legacy_array_becomes_object(self, sample_projects):
        """[p1, p2] reads as {"projects": [p1, p2]}."""
        assert isinstance(classify_document(sample_projects), LegacyArrayForm)
        assert normalize_document(sample_projects) == {"projects": sample_projects}

    def test_normalizing_twice_is_stable(self, sample_projects):
        """Normalization is idempotent."""
        once = normalize_document(sample_projects)

        assert normalize_document(once) == once

    def test_object_keeps_extra_structure(self):
        """Top-level keys other than projects are preserved."""
        raw = {"projects": [], "settings": {"theme": "dark"}}

        assert isinstance(classify_document(raw), NormalizedForm)
        assert normalize_document(raw) == raw

    def test_missing_projects_defaults_to_empty_list(self):
        """An object without projects gets an empty list."""
        assert normalize_document({"settings": {}}) == {"settings": {}, "projects": []}

    def test_version_key_is_dropped(self):
        """The version column is authoritative, so a version inside the body is not stored."""
        assert normalize_document({"projects": [], "version": 99}) == {"projects": []}

    def test_json_text_is_parsed(self):
        """Rows from deployments that stored JSON text are decoded."""
        assert normalize_document('[{"id": "p1"}]') == {"projects": [{"id": "p1"}]}

    def test_none_stays_none(self):
        assert normalize_document(None) is None

    def test_result_is_a_copy(self, sample_projects):
        """Mutating the result never touches the input."""
        result = normalize_document({"projects": sample_projects})
        result["projects"][0]["name"] = "changed"

        assert sample_projects[0]["name"] == "Launch"

    @pytest.mark.parametrize(
        "raw",
        [42, "not json", {"projects": {"id": "p1"}}, {"projects": "p1"}],
        ids=["number", "invalid_json", "projects_object", "projects_string"],
    )
    def test_rejects_malformed_shapes(self, raw):
        """Anything but an object or list, or a non-list projects field, is a validation error."""
        with pytest.raises(StateValidationError):
            normalize_document(raw)


class TestDiffEntities:
    """Tests for diff_entities."""

    def test_first_write_creates_every_project(self, sample_projects):
        changes = diff_entities(None, {"projects": sample_projects})

        assert [(c.entity_id, c.action_type) for c in changes] == [
            ("p1", ActionType.CREATE),
            ("p2", ActionType.CREATE),
        ]
        assert changes[0].snapshot_after == sample_projects[0]
        assert changes[0].payload == {"name": "Launch"}

    def test_update_lists_changed_fields(self, sample_projects):
        after = {"projects": [dict(sample_projects[0], name="Launch v2"), sample_projects[1]]}

        changes = diff_entities({"projects": sample_projects}, after)

        assert len(changes) == 1
        assert changes[0].entity_id == "p1"
        assert changes[0].action_type == ActionType.UPDATE
        assert changes[0].payload == {"changed_fields": ["name"]}
        assert changes[0].snapshot_after["name"] == "Launch v2"

    def test_delete_has_no_snapshot(self, sample_projects):
        changes = diff_entities({"projects": sample_projects}, {"projects": sample_projects[:1]})

        assert len(changes) == 1
        assert changes[0].entity_id == "p2"
        assert changes[0].action_type == ActionType.DELETE
        assert changes[0].snapshot_after is None

    def test_unchanged_document_has_no_changes(self, sample_projects):
        assert diff_entities({"projects": sample_projects}, {"projects": sample_projects}) == []

    def test_projects_without_id_are_not_tracked(self):
        changes = diff_entities(None, {"projects": [{"name": "no id"}, "junk", {"id": 7}]})

        assert [c.entity_id for c in changes] == ["7"]

    def test_as_restore_changes_keeps_reference(self, sample_projects):
        changes = as_restore_changes(diff_entities(None, {"projects": sample_projects[:1]}), backup_id=3)

        assert changes[0].action_type == ActionType.RESTORE
        assert changes[0].payload["backup_id"] == 3
        assert changes[0].payload["restored_action"] == "create"


class TestEntityEdits:
    """Tests for replace_entity / remove_entity / find_entity."""

    def test_replace_in_place(self, sample_projects):
        result = replace_entity({"projects": sample_projects}, "p1", {"id": "p1", "name": "Old"})

        assert [p["name"] for p in result["projects"]] == ["Old", "Roadmap"]

    def test_replace_appends_missing_project(self, sample_projects):
        result = replace_entity({"projects": sample_projects[:1]}, "p2", sample_projects[1])

        assert [p["id"] for p in result["projects"]] == ["p1", "p2"]

    def test_remove(self, sample_projects):
        result = remove_entity({"projects": sample_projects}, "p1")

        assert [p["id"] for p in result["projects"]] == ["p2"]
        assert find_entity(result, "p1") is None

    def test_numeric_ids_match_string_ids(self):
        assert find_entity({"projects": [{"id": 5, "name": "n"}]}, "5") == {"id": 5, "name": "n"}


class TestReplayEvents:
    """Tests for replay_events."""

    def test_fold_produces_each_version(self):
        events = [
            {"id": 1, "version": 1, "data": {"projects": [{"id": "a"}], "version": 1}},
            {"id": 2, "version": 2, "data": {"projects": [], "version": 2}},
        ]

        history = replay_events(events)

        assert [h.version for h in history] == [1, 2]
        assert history[0].document == {"projects": [{"id": "a"}]}
        assert history[-1].document == {"projects": []}

    def test_out_of_order_events_are_skipped(self):
        events = [
            {"id": 1, "version": 2, "data": {"projects": []}},
            {"id": 2, "version": 1, "data": {"projects": [{"id": "stale"}]}},
        ]

        assert [h.version for h in replay_events(events)] == [2]


class TestVersionedDocument:
    def test_payload_round_trip(self, sample_projects):
        doc = VersionedDocument(document={"projects": sample_projects}, version=4)

        payload = doc.to_payload()

        assert payload["version"] == 4
        assert VersionedDocument.from_payload(payload).document == {"projects": sample_projects}
