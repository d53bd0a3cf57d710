"""ORM model exports for convenient imports elsewhere in the app."""

from wastage_service.models.base import Base
from wastage_service.models.wastage import Wastage

__all__ = [
    "Base",
    "Wastage",
]
