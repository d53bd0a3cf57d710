"""Shared helpers for database error handling."""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

# MySQL ER_DUP_ENTRY / ER_DUP_KEY
MYSQL_DUPLICATE_KEY_CODES = {1022, 1062}
SQLSTATE_UNIQUE_VIOLATION = "23505"


class DuplicateChallanError(Exception):
    """A wastage row for the challan already exists (unique index rejected the insert)."""

    def __init__(self, inward_challan_id: str):
        super().__init__(f"Wastage already exists for challan: {inward_challan_id}")
        self.inward_challan_id = inward_challan_id


def is_unique_violation(exc: IntegrityError) -> bool:
    """Return ``True`` when the integrity error comes from a unique index or key."""

    orig = getattr(exc, "orig", None)
    code = None
    if orig and getattr(orig, "args", None):
        try:
            code = int(orig.args[0])
        except (TypeError, ValueError):
            code = None
    if code in MYSQL_DUPLICATE_KEY_CODES:
        return True
    if getattr(orig, "sqlstate", None) == SQLSTATE_UNIQUE_VIOLATION:
        return True
    message = str(getattr(exc, "orig", exc)).lower()
    return "duplicate entry" in message or "unique constraint" in message
