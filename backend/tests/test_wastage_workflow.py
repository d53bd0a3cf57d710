from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from fakes import (
    DummyOrig,
    FakeNotifier,
    FakeRecordStore,
    RacingRecordStore,
    deadlock_error,
    make_upload,
)
from wastage_service.core.config import settings
from wastage_service.services.attachment_store import AttachmentStore
from wastage_service.services.results import (
    DeleteResult,
    UpsertResult,
    WastageError,
    WastageErrorKind,
)
from wastage_service.services.wastage_workflow import WastageWorkflow, compute_mou_average

DATE = datetime(2025, 10, 10, 9, 30)


@pytest.fixture
def store():
    return FakeRecordStore()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def attachments(tmp_path):
    return AttachmentStore(tmp_path)


@pytest.fixture
def workflow(store, attachments, notifier):
    return WastageWorkflow(store, attachments, notifier)


@pytest.fixture(autouse=True)
def fast_db_retry(monkeypatch):
    monkeypatch.setattr(settings, "DB_RETRY_BASE_DELAY", 0.0)
    monkeypatch.setattr(settings, "DB_RETRY_JITTER", 0.0)


def _files_on_disk(root: Path) -> list[Path]:
    return [p for p in root.rglob("*") if p.is_file()]


async def _create(workflow, challan_id="CH-1", **overrides):
    kwargs = dict(
        inward_challan_id=challan_id,
        party_name="Shree Traders",
        vehicle_no="GJ01AB1234",
        date=DATE,
        mou_report=[],
        image_files=[make_upload("front.jpg")],
    )
    kwargs.update(overrides)
    return await workflow.upsert(**kwargs)


def test_compute_mou_average():
    assert compute_mou_average([Decimal(10), Decimal(20), Decimal(30)]) == Decimal(20)
    assert compute_mou_average([Decimal("10.5"), Decimal("20")]) == Decimal("15.25")
    assert compute_mou_average([]) is None


@pytest.mark.anyio
async def test_new_challan_without_images_is_rejected(workflow, store, tmp_path):
    result = await _create(workflow, image_files=[])

    assert isinstance(result, WastageError)
    assert result.kind is WastageErrorKind.VALIDATION
    assert "image" in result.message.lower()
    assert store.rows == {}
    assert store.insert_calls == 0
    assert _files_on_disk(tmp_path) == []


@pytest.mark.anyio
async def test_new_challan_with_only_rejected_images_is_rejected(workflow, store):
    result = await _create(workflow, image_files=[make_upload("virus.exe")])

    assert isinstance(result, WastageError)
    assert result.kind is WastageErrorKind.VALIDATION
    assert store.rows == {}


@pytest.mark.anyio
async def test_first_submission_creates_record(workflow, store, notifier, tmp_path):
    result = await _create(
        workflow,
        image_files=[make_upload("a.jpg"), make_upload("b.PNG"), make_upload("c.exe")],
    )

    assert isinstance(result, UpsertResult)
    assert result.is_update is False
    assert result.mou_average is None
    record = result.record
    assert record.id == 1
    assert len(store.rows) == 1
    assert len(record.image_urls) == 2
    assert all(url.startswith("/uploads/wastage/CH-1/") for url in record.image_urls)
    assert record.created_at is not None
    assert record.updated_at is None
    assert record.mou_report == []
    assert len(_files_on_disk(tmp_path)) == 2
    assert notifier.calls == []


@pytest.mark.anyio
async def test_second_submission_updates_same_record(workflow, store):
    created = await _create(workflow)
    updated = await _create(
        workflow,
        party_name="Shree Traders Pvt",
        vehicle_no="GJ01AB9999",
        date=datetime(2025, 10, 11),
        image_files=[],
    )

    assert isinstance(updated, UpsertResult)
    assert updated.is_update is True
    assert updated.record.id == created.record.id
    assert len(store.rows) == 1
    assert store.insert_calls == 1
    assert updated.record.party_name == "Shree Traders Pvt"
    assert updated.record.vehicle_no == "GJ01AB9999"
    assert updated.record.date == datetime(2025, 10, 11)
    assert updated.record.updated_at is not None
    assert updated.record.image_urls == created.record.image_urls


@pytest.mark.anyio
async def test_update_appends_new_images_after_existing(workflow):
    created = await _create(workflow, image_files=[make_upload("a.jpg")])
    original_urls = list(created.record.image_urls)

    updated = await _create(
        workflow, image_files=[make_upload("b.jpg"), make_upload("c.gif")]
    )

    urls = updated.record.image_urls
    assert len(urls) == 3
    assert urls[:1] == original_urls
    assert urls[1].endswith(".jpg")
    assert urls[2].endswith(".gif")


@pytest.mark.anyio
async def test_update_with_empty_mou_report_clears_it(workflow, notifier):
    await _create(workflow, mou_report=[Decimal(5), Decimal(7)])
    assert notifier.calls == [("CH-1", Decimal(6))]

    updated = await _create(workflow, mou_report=[], image_files=[])

    assert updated.record.mou_report == []
    assert updated.mou_average is None
    assert len(notifier.calls) == 1


@pytest.mark.anyio
async def test_update_replaces_mou_report(workflow):
    await _create(workflow, mou_report=[Decimal(1), Decimal(2)])
    updated = await _create(workflow, mou_report=[Decimal(9)], image_files=[])

    assert updated.record.mou_report == [Decimal(9)]
    assert updated.mou_average == Decimal(9)


@pytest.mark.anyio
async def test_average_is_forwarded_to_inward_challan(workflow, notifier):
    result = await _create(workflow, mou_report=[Decimal(10), Decimal(20), Decimal(30)])

    assert result.mou_average == Decimal(20)
    assert notifier.calls == [("CH-1", Decimal(20))]


@pytest.mark.anyio
async def test_notifier_failure_does_not_fail_the_write(store, attachments):
    workflow = WastageWorkflow(store, attachments, FakeNotifier(outcome=False))

    result = await _create(workflow, mou_report=[Decimal(4)])

    assert isinstance(result, UpsertResult)
    assert result.mou_average == Decimal(4)
    assert len(store.rows) == 1


@pytest.mark.anyio
async def test_concurrent_first_insert_surfaces_conflict(attachments, notifier, tmp_path):
    store = RacingRecordStore()
    workflow = WastageWorkflow(store, attachments, notifier)

    result = await _create(workflow, mou_report=[Decimal(3)])

    assert isinstance(result, WastageError)
    assert result.kind is WastageErrorKind.CONFLICT
    assert store.insert_calls == 1
    assert _files_on_disk(tmp_path) == []
    assert notifier.calls == []


@pytest.mark.anyio
async def test_transient_db_failure_is_retried(workflow, store):
    store.fail_next_commit = deadlock_error()

    result = await _create(workflow)

    assert isinstance(result, UpsertResult)
    assert store.insert_calls == 2
    assert store.rollbacks == 1
    assert len(store.rows) == 1


@pytest.mark.anyio
async def test_store_failure_is_internal_error_and_cleans_up(workflow, store, tmp_path):
    store.fail_next_commit = IntegrityError("stmt", {}, DummyOrig(1048, "Column cannot be null"))

    result = await _create(workflow)

    assert isinstance(result, WastageError)
    assert result.kind is WastageErrorKind.INTERNAL
    assert "Column" not in result.message
    assert store.rows == {}
    assert _files_on_disk(tmp_path) == []


@pytest.mark.anyio
@pytest.mark.parametrize(
    "overrides",
    [
        {"challan_id": "C" * 101},
        {"party_name": "P" * 201},
        {"vehicle_no": "V" * 51},
        {"party_name": "   "},
        {"challan_id": "../etc"},
    ],
)
async def test_invalid_fields_are_rejected_before_any_write(workflow, store, tmp_path, overrides):
    result = await _create(workflow, **overrides)

    assert isinstance(result, WastageError)
    assert result.kind is WastageErrorKind.VALIDATION
    assert store.rows == {}
    assert _files_on_disk(tmp_path) == []


@pytest.mark.anyio
async def test_lookups(workflow):
    created = await _create(workflow)

    by_challan = await workflow.get_by_challan_id("CH-1")
    by_id = await workflow.get_by_id(created.record.id)
    missing = await workflow.get_by_challan_id("CH-404")

    assert by_challan is created.record
    assert by_id is created.record
    assert isinstance(missing, WastageError)
    assert missing.kind is WastageErrorKind.NOT_FOUND


@pytest.mark.anyio
async def test_list_all_is_newest_first(store, attachments, notifier):
    ticks = iter([datetime(2025, 1, 1), datetime(2025, 1, 2), datetime(2025, 1, 3)])
    workflow = WastageWorkflow(store, attachments, notifier, clock=lambda: next(ticks))
    for challan_id in ("CH-A", "CH-B", "CH-C"):
        await _create(workflow, challan_id=challan_id)

    records = await workflow.list_all()

    assert [r.inward_challan_id for r in records] == ["CH-C", "CH-B", "CH-A"]


@pytest.mark.anyio
async def test_delete_removes_row_and_images(workflow, store, tmp_path):
    created = await _create(workflow, image_files=[make_upload("a.jpg"), make_upload("b.jpg")])
    assert len(_files_on_disk(tmp_path)) == 2

    result = await workflow.delete(created.record.id)

    assert result == DeleteResult(id=created.record.id, removed_images=2)
    assert store.rows == {}
    assert _files_on_disk(tmp_path) == []


@pytest.mark.anyio
async def test_delete_unknown_id_is_not_found(workflow, store, tmp_path):
    await _create(workflow)

    result = await workflow.delete(999)

    assert isinstance(result, WastageError)
    assert result.kind is WastageErrorKind.NOT_FOUND
    assert len(store.rows) == 1
    assert len(_files_on_disk(tmp_path)) == 1


@pytest.mark.anyio
async def test_aware_date_is_stored_as_naive_utc(workflow):
    ist = timezone(timedelta(hours=5, minutes=30))

    result = await _create(workflow, date=datetime(2025, 10, 10, 15, 0, tzinfo=ist))

    assert result.record.date == datetime(2025, 10, 10, 9, 30)
    assert result.record.date.tzinfo is None


@pytest.mark.anyio
async def test_stale_update_is_conflict_and_drops_new_images(workflow, store, tmp_path):
    await _create(workflow)
    store.fail_next_commit = StaleDataError("UPDATE statement on table 'wastages' matched 0 rows")

    result = await _create(workflow, image_files=[make_upload("late.jpg")])

    assert isinstance(result, WastageError)
    assert result.kind is WastageErrorKind.CONFLICT
    assert len(_files_on_disk(tmp_path)) == 1


@pytest.mark.anyio
async def test_stale_delete_of_changed_row_is_conflict(workflow, store):
    created = await _create(workflow)
    store.fail_next_commit = StaleDataError("DELETE statement on table 'wastages' matched 0 rows")

    result = await workflow.delete(created.record.id)

    assert isinstance(result, WastageError)
    assert result.kind is WastageErrorKind.CONFLICT
    assert len(store.rows) == 1
