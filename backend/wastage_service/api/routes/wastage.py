"""API endpoints for wastage entries recorded against inward challans."""

import json
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from wastage_service.core.db import get_session
from wastage_service.core.rate_limit import limiter, wastage_upload_rate
from wastage_service.schemas.wastage import MessageOut, WastageOut, WastageUpsertOut
from wastage_service.services.attachment_store import AttachmentStore
from wastage_service.services.challan_notifier import InwardChallanNotifier
from wastage_service.services.record_store import WastageRecordStore
from wastage_service.services.results import WastageError, WastageErrorKind
from wastage_service.services.wastage_workflow import WastageWorkflow

router = APIRouter(prefix="/wastage", tags=["wastage"])

_STATUS_BY_KIND = {
    WastageErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    WastageErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    WastageErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    WastageErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_attachment_store(request: Request) -> AttachmentStore:
    return request.app.state.attachment_store


def get_challan_notifier(request: Request) -> InwardChallanNotifier:
    return request.app.state.challan_notifier


def get_workflow(
    session: AsyncSession = Depends(get_session),
    attachments: AttachmentStore = Depends(get_attachment_store),
    notifier: InwardChallanNotifier = Depends(get_challan_notifier),
) -> WastageWorkflow:
    return WastageWorkflow(WastageRecordStore(session), attachments, notifier)


def _raise_for(error: WastageError) -> NoReturn:
    raise HTTPException(status_code=_STATUS_BY_KIND[error.kind], detail=error.message)


def _parse_mou_report(values: Optional[List[str]]) -> List[Decimal]:
    """Accept repeated ``mou_report`` fields, each a number or a JSON array of numbers."""

    readings: List[Decimal] = []
    for raw in values or []:
        raw = raw.strip()
        if not raw:
            continue
        try:
            if raw.startswith("["):
                readings.extend(Decimal(str(v)) for v in json.loads(raw))
            else:
                readings.append(Decimal(raw))
        except (InvalidOperation, ValueError, TypeError):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid MOU report value: {raw}",
            )
    if any(not v.is_finite() for v in readings):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="MOU report values must be finite numbers",
        )
    return readings


@router.post("", response_model=WastageUpsertOut)
@limiter.limit(wastage_upload_rate)
async def create_or_update_wastage(
    request: Request,
    inward_challan_id: str = Form(...),
    party_name: str = Form(...),
    vehicle_no: str = Form(...),
    date: datetime = Form(...),
    mou_report: Optional[List[str]] = Form(None),
    image_files: Optional[List[UploadFile]] = File(None),
    workflow: WastageWorkflow = Depends(get_workflow),
):
    """Create a wastage entry for a new challan or update the existing one."""
    result = await workflow.upsert(
        inward_challan_id=inward_challan_id,
        party_name=party_name,
        vehicle_no=vehicle_no,
        date=date,
        mou_report=_parse_mou_report(mou_report),
        image_files=image_files,
    )
    if isinstance(result, WastageError):
        _raise_for(result)

    return WastageUpsertOut(
        message="Wastage updated successfully" if result.is_update else "Wastage created successfully",
        data=WastageOut.from_record(
            result.record, mou_average=result.mou_average, is_update=result.is_update
        ),
        is_update=result.is_update,
    )


@router.get("/by-challan/{inward_challan_id}", response_model=WastageOut)
async def get_wastage_by_challan_id(
    inward_challan_id: str,
    workflow: WastageWorkflow = Depends(get_workflow),
):
    result = await workflow.get_by_challan_id(inward_challan_id)
    if isinstance(result, WastageError):
        _raise_for(result)
    return WastageOut.from_record(result)


@router.get("", response_model=List[WastageOut])
async def list_wastages(workflow: WastageWorkflow = Depends(get_workflow)):
    """All wastage entries, most recently created first."""
    result = await workflow.list_all()
    if isinstance(result, WastageError):
        _raise_for(result)
    return [WastageOut.from_record(record) for record in result]


@router.get("/{wastage_id}", response_model=WastageOut)
async def get_wastage(
    wastage_id: int,
    workflow: WastageWorkflow = Depends(get_workflow),
):
    result = await workflow.get_by_id(wastage_id)
    if isinstance(result, WastageError):
        _raise_for(result)
    return WastageOut.from_record(result)


@router.delete("/{wastage_id}", response_model=MessageOut)
async def delete_wastage(
    wastage_id: int,
    workflow: WastageWorkflow = Depends(get_workflow),
):
    result = await workflow.delete(wastage_id)
    if isinstance(result, WastageError):
        _raise_for(result)
    return MessageOut(message="Wastage deleted successfully")
