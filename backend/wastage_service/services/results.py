"""Outcome types returned by the wastage workflow.

Every workflow operation returns either its success payload or a
``WastageError`` so callers match on a closed set of outcomes instead of
catching exceptions.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, TypeVar, Union

from wastage_service.models.wastage import Wastage

T = TypeVar("T")


class WastageErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    INTERNAL = "internal"


@dataclass(frozen=True)
class WastageError:
    kind: WastageErrorKind
    message: str

    @classmethod
    def validation(cls, message: str) -> "WastageError":
        return cls(WastageErrorKind.VALIDATION, message)

    @classmethod
    def conflict(cls, message: str) -> "WastageError":
        return cls(WastageErrorKind.CONFLICT, message)

    @classmethod
    def not_found(cls, message: str) -> "WastageError":
        return cls(WastageErrorKind.NOT_FOUND, message)

    @classmethod
    def internal(cls, message: str) -> "WastageError":
        return cls(WastageErrorKind.INTERNAL, message)


@dataclass(frozen=True)
class UpsertResult:
    record: Wastage
    mou_average: Optional[Decimal]
    is_update: bool


@dataclass(frozen=True)
class DeleteResult:
    id: int
    removed_images: int


Outcome = Union[T, WastageError]
