"""
Tests for SubmissionService: ordering of validation, allocation and
persistence, the deadline gate, and best-effort notifications.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from abstract_submission_backend.errors import (
    ForbiddenError,
    MissingFieldsError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from abstract_submission_backend.models import REQUIRED_FIELDS
from abstract_submission_backend.sequence import SUBMISSION_SEQUENCE

from conftest import AFTER_DEADLINE, BEFORE_DEADLINE

ORIGIN = "https://abstracts.example.org"


class TestSubmit:
    def test_returns_sequential_ids(self, service, valid_submission):
        assert service.submit(valid_submission, ORIGIN) == 1
        assert service.submit(valid_submission, ORIGIN) == 2

    @pytest.mark.parametrize("field", REQUIRED_FIELDS)
    def test_each_required_field_is_enforced(self, service, allocator, valid_submission, field):
        payload = {**valid_submission, field: "   "}
        with pytest.raises(MissingFieldsError) as excinfo:
            service.submit(payload, ORIGIN)
        assert excinfo.value.missing == [field]
        assert allocator.current_value(SUBMISSION_SEQUENCE) == 0

    def test_missing_fields_are_reported_in_form_order(self, service):
        with pytest.raises(MissingFieldsError) as excinfo:
            service.submit({"company": "C"}, ORIGIN)
        assert excinfo.value.missing == [name for name in REQUIRED_FIELDS if name != "company"]

    def test_non_dict_input_is_rejected(self, service):
        with pytest.raises(ValidationError):
            service.submit("submitterName=A", ORIGIN)

    def test_operator_keys_are_not_stored(self, service, store, valid_submission):
        unique_id = service.submit({**valid_submission, "$where": "1 == 1", "extra.field": "x"}, ORIGIN)
        stored = store.find_by_unique_id(unique_id)
        assert "$where" not in stored.fields
        assert "extra.field" not in stored.fields

    def test_created_at_comes_from_clock(self, service, store, valid_submission):
        unique_id = service.submit(valid_submission, ORIGIN)
        assert store.find_by_unique_id(unique_id).created_at == BEFORE_DEADLINE

    def test_failed_insert_leaves_a_gap(self, service, monkeypatch, valid_submission):
        original_create = service.store.create
        calls = []

        def flaky_create(record):
            calls.append(record["uniqueID"])
            if len(calls) == 1:
                raise PersistenceError("database is locked")
            return original_create(record)

        monkeypatch.setattr(service.store, "create", flaky_create)
        with pytest.raises(PersistenceError):
            service.submit(valid_submission, ORIGIN)
        assert service.submit(valid_submission, ORIGIN) == 2

    def test_edit_link_uses_origin(self, service, transport, valid_submission):
        service.submit(valid_submission, ORIGIN + "/")
        service.dispatcher.flush()
        [confirmation] = transport.messages_to("a@x.com")
        assert f"{ORIGIN}/edit?id=1." in confirmation.text

    def test_concurrent_submits_get_distinct_dense_ids(self, service, valid_submission):
        with ThreadPoolExecutor(max_workers=8) as pool:
            ids = list(pool.map(lambda i: service.submit({**valid_submission, "abstractTitle": f"T{i}"}, ORIGIN), range(40)))
        assert sorted(ids) == list(range(1, 41))


class TestFetch:
    def test_view_matches_submission(self, service, valid_submission):
        unique_id = service.submit(valid_submission, ORIGIN)
        view = service.fetch(unique_id)
        assert view.model_dump(exclude={"uniqueID", "createdAt"}) == valid_submission
        assert view.uniqueID == unique_id

    def test_accepts_numeric_strings(self, service, valid_submission):
        service.submit(valid_submission, ORIGIN)
        assert service.fetch(" 1 ").uniqueID == 1

    @pytest.mark.parametrize("raw_id", ["abc", "1.5", "-3", "", None, True])
    def test_rejects_non_integer_ids(self, service, raw_id):
        with pytest.raises(ValidationError):
            service.fetch(raw_id)

    def test_unknown_id_is_not_found(self, service):
        with pytest.raises(NotFoundError):
            service.fetch(5)


class TestUpdate:
    def test_merges_only_given_fields(self, service, valid_submission):
        unique_id = service.submit(valid_submission, ORIGIN)
        view = service.update(unique_id, {"authorNames": "A, B"})
        assert view.authorNames == "A, B"
        assert view.model_dump(exclude={"authorNames", "uniqueID", "createdAt"}) == {
            name: value for name, value in valid_submission.items() if name != "authorNames"
        }

    def test_ignores_identity_and_unknown_fields(self, service, store, valid_submission):
        unique_id = service.submit(valid_submission, ORIGIN)
        view = service.update(unique_id, {"uniqueID": 50, "createdAt": "1999-01-01", "votes": 10})
        assert view.uniqueID == unique_id
        assert view.createdAt == BEFORE_DEADLINE
        assert "votes" not in store.find_by_unique_id(unique_id).fields

    def test_ignores_operator_values(self, service, valid_submission):
        unique_id = service.submit(valid_submission, ORIGIN)
        view = service.update(unique_id, {"theme": {"$set": "x"}})
        assert view.theme == valid_submission["theme"]

    def test_can_edit_repeatedly_until_deadline(self, service, clock, valid_submission):
        unique_id = service.submit(valid_submission, ORIGIN)
        service.update(unique_id, {"theme": "One"})
        service.update(unique_id, {"theme": "Two"})
        clock.now = AFTER_DEADLINE
        with pytest.raises(ForbiddenError):
            service.update(unique_id, {"theme": "Three"})
        assert service.fetch(unique_id).theme == "Two"

    def test_last_day_of_deadline_is_still_open(self, service, clock, valid_submission):
        unique_id = service.submit(valid_submission, ORIGIN)
        clock.now = AFTER_DEADLINE.replace(year=2024, month=12, day=31, hour=23, minute=59)
        assert service.update(unique_id, {"theme": "Final"}).theme == "Final"

    def test_rejects_non_dict_patch(self, service):
        with pytest.raises(ValidationError):
            service.update(1, ["theme"])

    def test_unknown_id_is_not_found(self, service):
        with pytest.raises(NotFoundError):
            service.update(3, {"theme": "x"})

    def test_sends_update_notice(self, service, transport, valid_submission):
        unique_id = service.submit({**valid_submission, "submitterEmail": "first@x.com"}, ORIGIN)
        service.update(unique_id, {"submitterEmail": "second@x.com"})
        service.dispatcher.flush()
        [notice] = transport.messages_to("second@x.com")
        assert notice.subject == "Submission Updated"
        assert f"ID {unique_id}" in notice.text
