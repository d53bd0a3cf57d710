"""Create-or-update of wastage entries and propagation of the MOU average."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Sequence

from fastapi import UploadFile
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from wastage_service.core.db_errors import DuplicateChallanError
from wastage_service.core.db_retry import with_db_retry
from wastage_service.models.wastage import Wastage
from wastage_service.services.attachment_store import AttachmentStore
from wastage_service.services.challan_notifier import InwardChallanNotifier
from wastage_service.services.record_store import WastageRecordStore
from wastage_service.services.results import (
    DeleteResult,
    Outcome,
    UpsertResult,
    WastageError,
)

MAX_CHALLAN_ID_LENGTH = 100
MAX_PARTY_NAME_LENGTH = 200
MAX_VEHICLE_NO_LENGTH = 50

SAVE_FAILED_MESSAGE = "An error occurred while saving the wastage entry"
READ_FAILED_MESSAGE = "An error occurred while retrieving wastage"


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Stored datetimes are naive UTC; aware input is converted, naive input kept as is."""

    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def compute_mou_average(mou_report: Sequence[Decimal]) -> Optional[Decimal]:
    """Arithmetic mean of the MOU readings, ``None`` when there are none."""

    if not mou_report:
        return None
    values = [Decimal(str(v)) for v in mou_report]
    return sum(values, Decimal(0)) / len(values)


def _validate_fields(
    inward_challan_id: str, party_name: str, vehicle_no: str
) -> Optional[WastageError]:
    for field, value, limit in (
        ("inward_challan_id", inward_challan_id, MAX_CHALLAN_ID_LENGTH),
        ("party_name", party_name, MAX_PARTY_NAME_LENGTH),
        ("vehicle_no", vehicle_no, MAX_VEHICLE_NO_LENGTH),
    ):
        if not value or not value.strip():
            return WastageError.validation(f"{field} is required")
        if len(value) > limit:
            return WastageError.validation(f"{field} must be at most {limit} characters")
    if not AttachmentStore.is_valid_scope_key(inward_challan_id):
        return WastageError.validation("inward_challan_id contains invalid characters")
    return None


class WastageWorkflow:
    """Orchestrates the record store, attachment store and challan notifier.

    The row is committed before the inward challan service is told about the
    new average, and nothing the notifier does can undo that commit. Two
    first-time submissions racing on one challan are settled by the unique
    index; the loser gets a conflict.
    """

    def __init__(
        self,
        records: WastageRecordStore,
        attachments: AttachmentStore,
        notifier: InwardChallanNotifier,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.records = records
        self.attachments = attachments
        self.notifier = notifier
        self._clock = clock

    async def upsert(
        self,
        inward_challan_id: str,
        party_name: str,
        vehicle_no: str,
        date: datetime,
        mou_report: Optional[Sequence[Decimal]] = None,
        image_files: Optional[Sequence[UploadFile]] = None,
    ) -> Outcome[UpsertResult]:
        error = _validate_fields(inward_challan_id, party_name, vehicle_no)
        if error is not None:
            return error
        date = to_naive_utc(date)
        mou_report = [Decimal(str(v)) for v in (mou_report or [])]
        image_files = list(image_files or [])

        try:
            existing = await with_db_retry(
                self.records,
                lambda: self.records.find_by_challan_id(inward_challan_id),
            )
        except SQLAlchemyError:
            logger.bind(challan_id=inward_challan_id).exception("wastage_lookup_failed")
            return WastageError.internal(SAVE_FAILED_MESSAGE)

        is_update = existing is not None
        if existing is None:
            if not image_files:
                return WastageError.validation(
                    "At least one image is required for new wastage entries"
                )
            outcome = await self._create(
                inward_challan_id, party_name, vehicle_no, date, mou_report, image_files
            )
        else:
            outcome = await self._update(
                existing, party_name, vehicle_no, date, mou_report, image_files
            )
        if isinstance(outcome, WastageError):
            return outcome

        record = outcome
        mou_average = compute_mou_average(record.mou_report)
        if mou_average is not None:
            await self._propagate_average(inward_challan_id, mou_average)

        logger.bind(
            challan_id=inward_challan_id,
            wastage_id=record.id,
            images=len(record.image_urls),
            mou_average=str(mou_average) if mou_average is not None else None,
        ).info("wastage_updated" if is_update else "wastage_created")
        return UpsertResult(record=record, mou_average=mou_average, is_update=is_update)

    async def _create(
        self,
        inward_challan_id: str,
        party_name: str,
        vehicle_no: str,
        date: datetime,
        mou_report: list[Decimal],
        image_files: list[UploadFile],
    ) -> Outcome[Wastage]:
        image_urls = await self.attachments.save(image_files, inward_challan_id)
        if not image_urls:
            return WastageError.validation(
                "None of the uploaded images were accepted (jpg, jpeg, png or gif up to 10 MB)"
            )

        record = Wastage(
            inward_challan_id=inward_challan_id,
            party_name=party_name,
            vehicle_no=vehicle_no,
            date=date,
            mou_report=mou_report,
            image_urls=image_urls,
            created_at=self._clock(),
        )
        try:
            return await with_db_retry(self.records, lambda: self.records.insert(record))
        except DuplicateChallanError:
            logger.bind(challan_id=inward_challan_id).warning("wastage_create_conflict")
            await self.attachments.delete(image_urls)
            return WastageError.conflict(
                f"Wastage for challan {inward_challan_id} was created by another request. "
                "Please retry."
            )
        except SQLAlchemyError:
            logger.bind(challan_id=inward_challan_id).exception("wastage_create_failed")
            await self.records.rollback()
            await self.attachments.delete(image_urls)
            return WastageError.internal(SAVE_FAILED_MESSAGE)

    async def _update(
        self,
        record: Wastage,
        party_name: str,
        vehicle_no: str,
        date: datetime,
        mou_report: list[Decimal],
        image_files: list[UploadFile],
    ) -> Outcome[Wastage]:
        inward_challan_id = record.inward_challan_id
        new_urls: list[str] = []
        if image_files:
            new_urls = await self.attachments.save(image_files, inward_challan_id)
        image_urls = list(record.image_urls or []) + new_urls

        async def _write() -> Wastage:
            # Reapplied on every attempt: a rollback expires pending changes.
            record.party_name = party_name
            record.vehicle_no = vehicle_no
            record.date = date
            record.mou_report = mou_report
            record.image_urls = image_urls
            record.updated_at = self._clock()
            return await self.records.update(record)

        try:
            return await with_db_retry(self.records, _write)
        except StaleDataError:
            logger.bind(challan_id=inward_challan_id).warning("wastage_update_stale")
            await self.records.rollback()
            await self.attachments.delete(new_urls)
            return WastageError.conflict(
                f"Wastage for challan {inward_challan_id} was changed by another request. "
                "Please retry."
            )
        except SQLAlchemyError:
            logger.bind(challan_id=inward_challan_id).exception("wastage_update_failed")
            await self.records.rollback()
            await self.attachments.delete(new_urls)
            return WastageError.internal(SAVE_FAILED_MESSAGE)

    async def _propagate_average(self, inward_challan_id: str, mou_average: Decimal) -> None:
        delivered = await self.notifier.notify_average(inward_challan_id, mou_average)
        log = logger.bind(challan_id=inward_challan_id, mou_average=str(mou_average))
        if delivered:
            log.info("inward_challan_mou_updated")
        else:
            log.warning("inward_challan_mou_update_failed")

    async def get_by_challan_id(self, inward_challan_id: str) -> Outcome[Wastage]:
        try:
            record = await with_db_retry(
                self.records,
                lambda: self.records.find_by_challan_id(inward_challan_id),
            )
        except SQLAlchemyError:
            logger.bind(challan_id=inward_challan_id).exception("wastage_lookup_failed")
            return WastageError.internal(READ_FAILED_MESSAGE)
        if record is None:
            return WastageError.not_found(
                f"No wastage found for challan ID: {inward_challan_id}"
            )
        return record

    async def get_by_id(self, wastage_id: int) -> Outcome[Wastage]:
        try:
            record = await with_db_retry(
                self.records, lambda: self.records.find_by_id(wastage_id)
            )
        except SQLAlchemyError:
            logger.bind(wastage_id=wastage_id).exception("wastage_lookup_failed")
            return WastageError.internal(READ_FAILED_MESSAGE)
        if record is None:
            return WastageError.not_found(f"Wastage with ID {wastage_id} not found")
        return record

    async def list_all(self) -> Outcome[list[Wastage]]:
        try:
            records = await with_db_retry(
                self.records, self.records.list_all_ordered_by_creation_descending
            )
        except SQLAlchemyError:
            logger.exception("wastage_list_failed")
            return WastageError.internal("An error occurred while retrieving wastages")
        return list(records)

    async def delete(self, wastage_id: int) -> Outcome[DeleteResult]:
        """Delete the row, then its image files."""

        found = await self.get_by_id(wastage_id)
        if isinstance(found, WastageError):
            return found

        record = found
        image_urls = list(record.image_urls or [])
        try:
            await with_db_retry(self.records, lambda: self.records.delete(record))
        except StaleDataError:
            await self.records.rollback()
            return await self._stale_delete_outcome(wastage_id)
        except SQLAlchemyError:
            logger.bind(wastage_id=wastage_id).exception("wastage_delete_failed")
            await self.records.rollback()
            return WastageError.internal("An error occurred while deleting wastage")

        removed = await self.attachments.delete(image_urls)
        logger.bind(wastage_id=wastage_id, removed_images=removed).info("wastage_deleted")
        return DeleteResult(id=wastage_id, removed_images=removed)

    async def _stale_delete_outcome(self, wastage_id: int) -> WastageError:
        try:
            still_there = await self.records.exists(wastage_id)
        except SQLAlchemyError:
            logger.bind(wastage_id=wastage_id).exception("wastage_delete_failed")
            return WastageError.internal("An error occurred while deleting wastage")
        if not still_there:
            logger.bind(wastage_id=wastage_id).info("wastage_delete_already_gone")
            return WastageError.not_found(f"Wastage with ID {wastage_id} not found")
        logger.bind(wastage_id=wastage_id).warning("wastage_delete_stale")
        return WastageError.conflict(
            f"Wastage with ID {wastage_id} was changed by another request. Please retry."
        )
