"""Tests for the patient record store against an in-memory database."""

import uuid

import pytest
from sqlalchemy.exc import SQLAlchemyError

from campaign_registry.exceptions import (
    DuplicatePhoneError,
    IllegalStateError,
    InvalidIdError,
    NotDeletedError,
    NotFoundError,
    RecordDeletedError,
    ValidationError,
)
from campaign_registry.models.patient import Patient, utcnow
from campaign_registry.services.audit import append_history


def _make_patient(**overrides):
    record = {
        "name": "Amina Bello",
        "age": "34",
        "sex": "Female",
        "occupation": "Trader",
        "tel": "677-123-456",
        "familyGroup": "ESDA",
        "services": ["General consultations", "Eye con"],
        "labTests": ["Malaria"],
    }
    record.update(overrides)
    return record


def test_create_then_get_round_trips_input_fields(store):
    created = store.create(_make_patient())
    fetched = store.get(str(created.id))

    assert fetched.name == "Amina Bello"
    assert fetched.age == 34
    assert fetched.sex == "Female"
    assert fetched.tel == "677-123-456"
    assert fetched.family_group == "ESDA"
    assert fetched.services == ["General consultations", "Eye consultation"]
    assert fetched.lab_tests == ["Malaria"]
    assert fetched.status == "registered"
    assert fetched.legacy_service is None
    assert fetched.registration_date and fetched.registration_time
    assert [entry.action for entry in fetched.history] == ["created"]


def test_legacy_service_input_normalized(store):
    payload = _make_patient(services=None, service="Eye con")
    patient = store.create(payload)
    assert patient.services == ["Eye consultation"]
    assert patient.legacy_service is None


def test_duplicate_phone_ignores_punctuation(store):
    store.create(_make_patient(tel="677 123 456"))
    with pytest.raises(DuplicatePhoneError):
        store.create(_make_patient(name="Other Person", tel="(677)-123-456"))


def test_phone_of_soft_deleted_record_can_be_reused(store):
    first = store.create(_make_patient())
    store.delete(first.id)
    second = store.create(_make_patient(name="New Owner"))
    assert second.tel_digits == first.tel_digits


def test_validation_failure_writes_nothing(store, db):
    with pytest.raises(ValidationError):
        store.create(_make_patient(age=999))
    assert db.query(Patient).count() == 0


def test_update_records_field_diff(store):
    patient = store.create(_make_patient())
    updated, changes = store.update(
        patient.id, {"diagnosis": "Uncomplicated malaria", "name": "Amina Bello", "labTests": ["Malaria", "HIV"]}
    )

    assert set(changes) == {"diagnosis", "labTests"}
    entry = updated.history[-1]
    assert entry.action == "updated"
    assert entry.changes["diagnosis"] == {"from": "", "to": "Uncomplicated malaria"}
    assert entry.changes["labTests"] == {"from": ["Malaria"], "to": ["Malaria", "HIV"]}
    assert updated.occupation == "Trader"


def test_update_phone_conflict(store):
    store.create(_make_patient())
    other = store.create(_make_patient(name="Second", tel="699 000 111"))
    with pytest.raises(DuplicatePhoneError):
        store.update(other.id, {"tel": "677123456"})


def test_completion_stamped_once_but_history_grows(store):
    patient = store.create(_make_patient())
    first, _ = store.update(patient.id, {"status": "completed"})
    stamp = (first.completion_date, first.completion_time)
    modified = first.last_modified

    second, changes = store.update(patient.id, {"status": "completed"})
    assert (second.completion_date, second.completion_time) == stamp
    assert second.last_modified >= modified
    assert changes == []
    assert [e.action for e in second.history] == ["created", "completed", "completed"]


def test_soft_delete_then_restore_preserves_fields_and_history(store):
    patient = store.create(_make_patient())
    store.update(patient.id, {"diagnosis": "Flu"})
    store.delete(patient.id)

    deleted = store.get(patient.id)
    assert deleted.is_deleted and deleted.status == "deleted" and deleted.deleted_at is not None

    restored = store.restore(patient.id)
    assert restored.status == "registered"
    assert restored.is_deleted is False
    assert restored.deleted_at is None
    assert restored.diagnosis == "Flu"
    assert [e.action for e in restored.history] == ["created", "updated", "deleted", "updated"]
    assert restored.history[-1].changes["restored"] == {"from": False, "to": True}


def test_deleted_record_cannot_be_updated_or_deleted_again(store):
    patient = store.create(_make_patient())
    store.delete(patient.id)
    with pytest.raises(RecordDeletedError):
        store.update(patient.id, {"diagnosis": "x"})
    with pytest.raises(RecordDeletedError):
        store.delete(patient.id)


def test_restore_live_record_rejected(store):
    patient = store.create(_make_patient())
    with pytest.raises(NotDeletedError):
        store.restore(patient.id)


def test_restore_blocked_when_phone_taken(store):
    patient = store.create(_make_patient())
    store.delete(patient.id)
    store.create(_make_patient(name="New Owner"))
    with pytest.raises(DuplicatePhoneError):
        store.restore(patient.id)


def test_permanent_delete_leaves_no_trace(store):
    patient = store.create(_make_patient())
    echo = store.delete(patient.id, permanent=True)
    assert echo["name"] == "Amina Bello"
    with pytest.raises(NotFoundError):
        store.get(patient.id)
    with pytest.raises(NotFoundError):
        store.restore(patient.id)


def test_invalid_and_unknown_ids(store):
    with pytest.raises(InvalidIdError):
        store.get("not-a-uuid")
    with pytest.raises(NotFoundError):
        store.get(str(uuid.uuid4()))


def test_illegal_status_transition_rejected(store):
    patient = store.create(_make_patient())
    store.update(patient.id, {"status": "cancelled"})
    with pytest.raises(IllegalStateError):
        store.update(patient.id, {"status": "completed"})


def test_update_migrates_legacy_only_record(store, db):
    now = utcnow()
    legacy = Patient(
        name="Old Record",
        age=50,
        sex="Male",
        tel="670000001",
        tel_digits="670000001",
        family_group="OTHERS",
        legacy_service="Eye con",
        registration_date="2025-01-01",
        registration_time="08:00:00",
        created_at=now,
        last_modified=now,
    )
    db.add(legacy)
    db.commit()

    patient, changes = store.update(legacy.id, {"occupation": "Farmer"})
    assert patient.services == ["Eye consultation"]
    assert patient.legacy_service is None
    assert {"services", "service", "occupation"} <= set(changes)


def test_history_append_failure_does_not_undo_write(store, db, monkeypatch):
    patient = store.create(_make_patient())

    def broken_commit():
        raise SQLAlchemyError("history table unavailable")

    monkeypatch.setattr(db, "commit", broken_commit)
    assert append_history(db, patient, action="updated", changes={"x": {"from": 1, "to": 2}}) is None
    monkeypatch.undo()

    assert store.get(patient.id).name == "Amina Bello"
    assert [e.action for e in store.get(patient.id).history] == ["created"]


# ---------------------------------------------------------------------------
# Bulk operations
# ---------------------------------------------------------------------------

def test_bulk_complete_only_affects_registered(store):
    a = store.create(_make_patient(tel="670000001"))
    b = store.create(_make_patient(tel="670000002"))
    store.update(b.id, {"status": "completed"})

    result = store.bulk("complete", patient_ids=[str(a.id), str(b.id)])
    assert result.requested == 2
    assert result.affected == 1
    assert [s["id"] for s in result.skipped] == [str(b.id)]
    assert store.get(a.id).status == "completed"


def test_bulk_delete_and_restore_by_filter(store):
    ids = [store.create(_make_patient(tel=f"67000000{i}")).id for i in range(3)]
    assert store.bulk("delete", patient_ids=[str(i) for i in ids]).affected == 3

    result = store.bulk("restore", filter_params={"familyGroup": "ESDA"})
    assert result.affected == 3
    assert all(not store.get(i).is_deleted for i in ids)


def test_bulk_update_normalizes_services(store):
    a = store.create(_make_patient(tel="670000001"))
    result = store.bulk("update", patient_ids=[str(a.id)], update_data={"services": ["Eye con"]})
    assert result.affected == 1
    assert store.get(a.id).services == ["Eye consultation"]


def test_bulk_permanent_delete_counts_missing_as_skipped(store):
    a = store.create(_make_patient(tel="670000001"))
    result = store.bulk("permanentDelete", patient_ids=[str(a.id), str(uuid.uuid4())])
    assert (result.requested, result.affected) == (2, 1)
    assert result.skipped[0]["reason"] == "not_found"


def test_bulk_rejects_bad_requests_before_touching_records(store):
    with pytest.raises(ValidationError):
        store.bulk("archive", patient_ids=[])
    with pytest.raises(ValidationError):
        store.bulk("update", patient_ids=[str(uuid.uuid4())])
    with pytest.raises(ValidationError):
        store.bulk("update", patient_ids=[str(uuid.uuid4())], update_data={"age": -1})
    with pytest.raises(InvalidIdError) as excinfo:
        store.bulk("delete", patient_ids=["bad-1", str(uuid.uuid4()), "bad-2"])
    assert excinfo.value.extra["invalidIds"] == ["bad-1", "bad-2"]
