"""Resolve the customer an order belongs to."""

import logging
import re
from typing import Any
from uuid import UUID

from postgrest.exceptions import APIError as PostgrestAPIError
from supabase import Client

from src.core.supabase import get_supabase_client, is_unique_violation
from src.models.customer import Customer
from src.services.order_parser import ContactInfo, ParsedOrder

logger = logging.getLogger(__name__)

# Checkout writes "Customer ID: <uuid> | Order: <number>" into the order note
NOTE_CUSTOMER_ID = re.compile(r"Customer ID:\s*([a-f0-9-]{36})", re.IGNORECASE)

BACKFILL_FIELDS = ("first_name", "last_name", "phone")


def _as_uuid(value: Any) -> str | None:
    if not value:
        return None
    try:
        return str(UUID(str(value).strip()))
    except ValueError:
        return None


def customer_id_from_note(note: str | None) -> str | None:
    """Parse a customer id from a structured order note."""
    if not note:
        return None
    match = NOTE_CUSTOMER_ID.search(note)
    return _as_uuid(match.group(1)) if match else None


class IdentityReconciler:
    """Maps order metadata and recipient contact info to a customer row.

    Resolution order:
        1. ``customer_id`` in order metadata
        2. ``Customer ID: <uuid>`` in the order note
        3. Lookup by normalized email from the recipient contact
        4. Guest promotion: create a customer for an unknown email
        5. No identity signal: None
    """

    def __init__(self, client: Client | None = None) -> None:
        """Initialize reconciler with a Supabase client."""
        self.client = client or get_supabase_client()

    async def resolve(
        self,
        metadata: dict[str, Any] | None,
        order: ParsedOrder,
    ) -> str | None:
        """Resolve the customer id for an order.

        Args:
            metadata: Order metadata set at checkout.
            order: Parsed order carrying the note and recipient contact.

        Returns:
            str | None: Customer id, or None for a pure guest order.
        """
        explicit_id = _as_uuid((metadata or {}).get("customer_id")) or customer_id_from_note(order.note)
        if explicit_id:
            customer = self._get_customer(explicit_id)
            if customer:
                if order.contact:
                    self._backfill(customer, order.contact)
                return customer["id"]
            logger.warning("Customer %s referenced by order does not exist, falling back to email", explicit_id)

        contact = order.contact
        email = contact.normalized_email if contact else None
        if not email:
            return None

        customer = self._get_customer_by_email(email)
        if customer:
            self._backfill(customer, contact)
            return customer["id"]

        return self._create_guest(email, contact)

    def _get_customer(self, customer_id: str) -> Customer | None:
        response = self.client.table("customers").select("*").eq("id", customer_id).limit(1).execute()
        return response.data[0] if response.data else None

    def _get_customer_by_email(self, email: str) -> Customer | None:
        response = self.client.table("customers").select("*").eq("email", email).limit(1).execute()
        return response.data[0] if response.data else None

    def _backfill(self, customer: Customer, contact: ContactInfo) -> None:
        """Fill customer fields that are empty; never overwrite stored values."""
        updates = {}
        for field_name in BACKFILL_FIELDS:
            incoming = getattr(contact, field_name)
            if incoming and not customer.get(field_name):
                updates[field_name] = incoming

        if not updates:
            return

        self.client.table("customers").update(updates).eq("id", customer["id"]).execute()
        logger.info("Backfilled customer %s fields: %s", customer["id"], ", ".join(sorted(updates)))

    def _create_guest(self, email: str, contact: ContactInfo) -> str:
        """Create a customer for a guest order, tolerating a concurrent insert."""
        row = {
            "email": email,
            "first_name": contact.first_name,
            "last_name": contact.last_name,
            "phone": contact.phone,
        }
        try:
            response = self.client.table("customers").insert(row).execute()
        except PostgrestAPIError as e:
            if not is_unique_violation(e):
                raise
            logger.info("Customer %s created concurrently, re-reading", email)
            customer = self._get_customer_by_email(email)
            if not customer:
                raise
            self._backfill(customer, contact)
            return customer["id"]

        customer_id = response.data[0]["id"]
        logger.info("Created guest customer %s", customer_id)
        return customer_id
