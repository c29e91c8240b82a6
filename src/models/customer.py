"""Customer model type definitions for database operations."""

from datetime import datetime
from typing import TypedDict
from uuid import UUID


class Customer(TypedDict):
    """customers table row representation.

    email is stored lower-cased and trimmed and is unique.
    """

    id: UUID
    email: str
    first_name: str | None
    last_name: str | None
    phone: str | None
    created_at: datetime
    updated_at: datetime
