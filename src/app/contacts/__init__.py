"""Company-scoped contact store."""

from src.app.contacts.models import ContactModel
from src.app.contacts.repository import ContactRepository
from src.app.contacts.schemas import (
    ContactCreate,
    ContactRead,
    ContactSource,
    ContactUpdate,
)

__all__ = [
    "ContactCreate",
    "ContactModel",
    "ContactRead",
    "ContactRepository",
    "ContactSource",
    "ContactUpdate",
]
