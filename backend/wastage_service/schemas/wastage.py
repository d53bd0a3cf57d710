"""Pydantic models for wastage entries."""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

from wastage_service.models.wastage import Wastage

# Decimals go out as JSON numbers rather than pydantic's default string form.
JsonDecimal = Annotated[
    Decimal, PlainSerializer(float, return_type=float, when_used="json")
]


class WastageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    inward_challan_id: str
    party_name: str
    vehicle_no: str
    date: datetime
    mou_report: List[JsonDecimal] = Field(default_factory=list)
    mou_average: Optional[JsonDecimal] = Field(
        None, description="Average of the MOU report, set on create/update responses"
    )
    image_urls: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: Optional[datetime] = None
    is_update: bool = False

    @classmethod
    def from_record(
        cls,
        record: Wastage,
        *,
        mou_average: Optional[Decimal] = None,
        is_update: bool = False,
    ) -> "WastageOut":
        out = cls.model_validate(record)
        return out.model_copy(update={"mou_average": mou_average, "is_update": is_update})


class WastageUpsertOut(BaseModel):
    success: bool = True
    message: str
    data: WastageOut
    is_update: bool


class MessageOut(BaseModel):
    message: str
