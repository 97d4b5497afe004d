"""Tests for filter composition, search, sorting and pagination."""

from datetime import date, datetime

import pytest

from campaign_registry.exceptions import ValidationError
from campaign_registry.models.patient import Patient, utcnow
from campaign_registry.services.filters import Page, PatientFilter


def _make_patient(**overrides):
    record = {
        "name": "Amina Bello",
        "age": 34,
        "sex": "Female",
        "tel": "677123456",
        "familyGroup": "ESDA",
        "services": ["General consultations"],
    }
    record.update(overrides)
    return record


def _names(patients):
    return sorted(p.name for p in patients)


@pytest.fixture
def population(store):
    a = store.create(_make_patient(name="Amina Bello", tel="670000001", familyGroup="ESDA"))
    b = store.create(_make_patient(name="Bruno Eto", tel="670000002", familyGroup="ESDA", sex="Male"))
    c = store.create(_make_patient(name="Chantal Mbah", tel="670000003", familyGroup="MASUDA"))
    d = store.create(
        _make_patient(name="Daniel Fon", tel="+237 699-888-777", familyGroup="ESDA", services=["Eye con", "Gynaecology"])
    )
    store.update(a.id, {"status": "completed"})
    store.update(c.id, {"status": "completed"})
    store.delete(b.id)
    return {"a": a, "b": b, "c": c, "d": d}


def test_status_and_family_group_combine(store, population):
    patient_filter = PatientFilter.from_params({"status": "completed", "familyGroup": "ESDA"})
    patients, total = store.list_patients(patient_filter)
    assert total == 1
    assert _names(patients) == ["Amina Bello"]


def test_all_is_a_wildcard(store, population):
    patients, total = store.list_patients(PatientFilter.from_params({"status": "all", "familyGroup": "all"}))
    assert total == 3


def test_deleted_records_excluded_unless_requested(store, population):
    _, live = store.list_patients(PatientFilter.from_params({}))
    _, everything = store.list_patients(PatientFilter.from_params({"includeDeleted": "true"}))
    assert (live, everything) == (3, 4)
    assert _names(store.search("Bruno", PatientFilter(), 50)) == []
    assert _names(store.search("Bruno", PatientFilter(include_deleted=True), 50)) == ["Bruno Eto"]


def test_service_filter_matches_set_membership_and_alias(store, population):
    patients, _ = store.list_patients(PatientFilter.from_params({"service": "Eye con"}))
    assert _names(patients) == ["Daniel Fon"]
    patients, _ = store.list_patients(PatientFilter.from_params({"services": "Gynaecology,General consultations"}))
    assert _names(patients) == ["Amina Bello", "Chantal Mbah", "Daniel Fon"]


def test_service_filter_matches_legacy_field(store, db):
    now = utcnow()
    db.add(
        Patient(
            name="Old Record",
            age=50,
            sex="Male",
            tel="670000009",
            tel_digits="670000009",
            family_group="OTHERS",
            legacy_service="Eye con",
            registration_date="2025-01-01",
            registration_time="08:00:00",
            created_at=now,
            last_modified=now,
        )
    )
    db.commit()
    patients, _ = store.list_patients(PatientFilter.from_params({"service": "Eye consultation"}))
    assert _names(patients) == ["Old Record"]


def test_search_name_case_insensitive_and_phone_digits(store, population):
    assert _names(store.search("chantal", PatientFilter(), 50)) == ["Chantal Mbah"]
    assert _names(store.search("699 888", PatientFilter(), 50)) == ["Daniel Fon"]
    assert _names(store.search("Mbah", PatientFilter(status="registered"), 50)) == []


def test_search_requires_query(store):
    with pytest.raises(ValidationError):
        store.search("   ", PatientFilter(), 50)


def test_search_caps_results(store):
    for i in range(5):
        store.create(_make_patient(name="Same Name", tel=f"67100000{i}"))
    assert len(store.search("same", PatientFilter(), 3)) == 3


def test_date_range_inclusive_of_whole_days(store, db, population):
    population["a"].created_at = datetime(2026, 3, 1, 0, 0, 0)
    population["c"].created_at = datetime(2026, 3, 2, 23, 59, 59)
    population["d"].created_at = datetime(2026, 3, 3, 0, 0, 0)
    db.commit()

    patient_filter = PatientFilter.from_params({"dateFrom": "2026-03-01", "dateTo": "2026-03-02"})
    patients, _ = store.list_patients(patient_filter)
    assert _names(patients) == ["Amina Bello", "Chantal Mbah"]


def test_default_sort_is_newest_first_and_pages_apply_after(store, population):
    patients, total = store.list_patients(PatientFilter(), Page(page=1, limit=2))
    assert total == 3
    assert [p.name for p in patients] == ["Daniel Fon", "Chantal Mbah"]

    patients, _ = store.list_patients(PatientFilter(), Page(page=2, limit=2))
    assert [p.name for p in patients] == ["Amina Bello"]

    patients, _ = store.list_patients(PatientFilter(), sort="name")
    assert [p.name for p in patients] == ["Amina Bello", "Chantal Mbah", "Daniel Fon"]


def test_list_deleted(store, population):
    patients, total = store.list_deleted(Page(page=1, limit=10))
    assert total == 1
    assert patients[0].name == "Bruno Eto"


def test_pagination_metadata():
    meta = Page(page=2, limit=10).metadata(25)
    assert meta == {
        "currentPage": 2,
        "totalPages": 3,
        "totalPatients": 25,
        "limit": 10,
        "hasNext": True,
        "hasPrev": True,
    }


def test_bad_filter_values_reported_together():
    with pytest.raises(ValidationError) as excinfo:
        PatientFilter.from_params(
            {"status": "archived", "familyGroup": "XYZ", "dateFrom": "yesterday", "service": "Surgery"}
        )
    assert len(excinfo.value.details) == 4


def test_page_bounds():
    with pytest.raises(ValidationError):
        Page.from_params({"limit": "0"})
    with pytest.raises(ValidationError):
        Page.from_params({"page": "two"})
    assert Page.from_params({}).page == 1


def test_status_deleted_implies_include_deleted():
    patient_filter = PatientFilter.from_params({"status": "deleted"})
    assert patient_filter.include_deleted is True
    assert patient_filter.describe()["dateFrom"] is None
    assert PatientFilter.from_params({"dateTo": "2026-01-31"}).date_to == date(2026, 1, 31)
