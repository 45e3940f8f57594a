from datetime import datetime, timezone

import pytest

from catalog_app.models import CatalogEntry, ChangeType, ProductChange, SyncJob, SyncJobStatus, db
from catalog_app.sync.differ import dedupe_records, diff_fields, reconcile
from catalog_app.sync.parsers import CandidateRecord


@pytest.fixture
def job(source):
    job = SyncJob(
        source_id=source.id,
        jurisdiction=source.jurisdiction,
        data_source=source.data_source,
        status=SyncJobStatus.RUNNING,
        started_at=datetime.now(timezone.utc),
    )
    db.session.add(job)
    db.session.commit()
    return job


def _entry(code, *, active=True, jurisdiction="MI", **fields):
    values = {"name": f"Product {code}", "brand": "Acme", "size": "16 oz", "category": "Dairy"}
    values.update(fields)
    entry = CatalogEntry(jurisdiction=jurisdiction, code=code, active=active, **values)
    db.session.add(entry)
    return entry


def _record(code, **fields):
    values = {"name": f"Product {code}", "brand": "Acme", "size": "16 oz", "category": "Dairy"}
    values.update(fields)
    return CandidateRecord(code=code, **values)


def test_reconcile_classifies_every_permutation(job):
    _entry("070000000001")  # unchanged
    _entry("070000000002")  # updated
    _entry("070000000003")  # removed
    _entry("070000000004", active=False)  # reactivated
    _entry("070000000005", active=False)  # stays inactive
    db.session.commit()

    summary = reconcile(
        job,
        [
            _record("070000000001"),
            _record("070000000002", brand="Acme Farms"),
            _record("070000000004", size="32 oz"),
            _record("070000000006"),  # added
        ],
    )
    db.session.commit()

    assert (summary.added, summary.updated, summary.reactivated, summary.removed, summary.unchanged) == (1, 1, 1, 1, 1)
    assert summary.existing_active == 3
    assert summary.total_changes == 4

    entries = {entry.code: entry for entry in CatalogEntry.query.all()}
    assert entries["070000000002"].brand == "Acme Farms"
    assert entries["070000000003"].active is False
    assert entries["070000000003"].deactivated_at is not None
    assert entries["070000000004"].active is True
    assert entries["070000000004"].deactivated_at is None
    assert entries["070000000004"].size == "32 oz"
    assert entries["070000000005"].active is False
    assert entries["070000000006"].last_synced_job_id == job.id
    assert entries["070000000006"].data_source == "state_website"

    changes = {change.code: change for change in ProductChange.query.filter_by(job_id=job.id).all()}
    assert set(changes) == {"070000000002", "070000000003", "070000000004", "070000000006"}
    assert changes["070000000002"].change_type is ChangeType.UPDATED
    assert changes["070000000002"].changed_fields == {"brand": {"old": "Acme", "new": "Acme Farms"}}
    assert changes["070000000004"].change_type is ChangeType.REACTIVATED
    assert changes["070000000004"].changed_fields == {"size": {"old": "16 oz", "new": "32 oz"}}
    assert changes["070000000003"].change_type is ChangeType.REMOVED
    assert changes["070000000006"].change_type is ChangeType.ADDED


def test_reactivation_without_field_changes_is_still_logged(job):
    _entry("070000000001", active=False)
    db.session.commit()

    summary = reconcile(job, [_record("070000000001")])
    db.session.commit()

    assert summary.reactivated == 1
    change = ProductChange.query.one()
    assert change.change_type is ChangeType.REACTIVATED
    assert change.changed_fields is None


def test_reconcile_is_idempotent_on_identical_input(job):
    records = [_record("070000000001"), _record("070000000002")]
    reconcile(job, records)
    db.session.commit()

    summary = reconcile(job, records)
    db.session.commit()

    assert summary.unchanged == 2
    assert summary.total_changes == 0
    assert ProductChange.query.count() == 2


def test_reconcile_scopes_snapshot_to_job_jurisdiction(job):
    _entry("070000000009", jurisdiction="OR")
    db.session.commit()

    summary = reconcile(job, [_record("070000000001")])
    db.session.commit()

    assert summary.removed == 0
    assert CatalogEntry.query.filter_by(jurisdiction="OR").one().active is True


def test_duplicate_codes_keep_last_occurrence(job):
    summary = reconcile(
        job,
        [
            _record("070000000001", name="First"),
            _record("070000000002"),
            _record("070000000001", name="Second"),
        ],
    )
    db.session.commit()

    assert summary.duplicates == 1
    assert summary.records_seen == 2
    assert summary.added == 2
    assert CatalogEntry.query.filter_by(code="070000000001").one().name == "Second"


def test_dedupe_preserves_first_seen_order():
    latest, duplicates = dedupe_records([_record("B0000001"), _record("A0000001"), _record("B0000001", name="x")])

    assert list(latest) == ["B0000001", "A0000001"]
    assert latest["B0000001"].name == "x"
    assert duplicates == 1


def test_failed_record_is_isolated_from_the_batch(job):
    # Codes outside 8-14 characters violate the table constraint
    summary = reconcile(job, [_record("070000000001"), _record("123"), _record("070000000002")])
    db.session.commit()

    assert summary.added == 2
    assert summary.errors == 1
    assert summary.error_samples[0]["code"] == "123"
    assert {entry.code for entry in CatalogEntry.query.all()} == {"070000000001", "070000000002"}
    assert ProductChange.query.count() == 2


def test_diff_fields_is_exact():
    entry = CatalogEntry(jurisdiction="MI", code="070000000001", name="Milk", brand=None, category="Dairy")

    assert diff_fields(entry, _record("070000000001", name="Milk", brand=None, size=None, category="Dairy")) == {}
    assert diff_fields(entry, _record("070000000001", name="milk", brand=None, size=None, category="Dairy")) == {
        "name": {"old": "Milk", "new": "milk"}
    }
