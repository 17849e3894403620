"""Contact management for escalations."""

import json
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alertcall.config import settings
from alertcall.models.contact import Contact
from alertcall.models.database import get_session_maker
from alertcall.utils.logging import get_logger
from alertcall.utils.validation import mask_phone_number, normalize_phone, validate_phone

logger = get_logger(__name__)


def build_chain(contacts: Iterable[Contact]) -> List[Contact]:
    """Order active contacts by escalation order.

    Inactive contacts, contacts without a usable phone number and contacts
    with a non-positive order are left out. The sort is stable, so contacts
    sharing an order keep their input order.
    """
    chain: List[Contact] = []
    seen_orders = set()

    for contact in contacts:
        if contact.is_active is False:
            continue

        if not contact.phone_number or not validate_phone(contact.phone_number):
            logger.warning(
                "Skipping contact with invalid phone number",
                contact_name=contact.contact_name,
                phone=mask_phone_number(contact.phone_number or ""),
            )
            continue

        if contact.escalation_order is None or contact.escalation_order < 1:
            logger.warning(
                "Skipping contact with invalid escalation order",
                contact_name=contact.contact_name,
                escalation_order=contact.escalation_order,
            )
            continue

        if contact.escalation_order in seen_orders:
            logger.warning(
                "Duplicate escalation order",
                contact_name=contact.contact_name,
                escalation_order=contact.escalation_order,
            )
        seen_orders.add(contact.escalation_order)
        chain.append(contact)

    chain.sort(key=lambda c: c.escalation_order)
    return chain


class ContactManager:
    """Loads the escalation chain from a JSON file or the database.

    The file format is::

        {"contacts": [{"name": "Ops", "phone": "+15551234567", "order": 1}]}

    ``active`` is optional and defaults to true.
    """

    def __init__(
        self,
        contacts_file: Optional[str] = None,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self.contacts_file = contacts_file if contacts_file is not None else settings.CONTACTS_FILE
        self._session_maker = session_maker
        self.contacts: List[Contact] = []

        if self.contacts_file:
            self.load_contacts()

    @property
    def uses_file(self) -> bool:
        return bool(self.contacts_file)

    def load_contacts(self) -> None:
        """Load escalation contacts from the JSON file."""
        contacts_path = Path(self.contacts_file)
        if not contacts_path.exists():
            logger.warning("Contacts file not found", file=self.contacts_file)
            self.contacts = []
            return

        try:
            with open(contacts_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Error loading contacts file", file=self.contacts_file, error=str(e))
            self.contacts = []
            return

        if not self._validate_contacts(data):
            self.contacts = []
            return

        self.contacts = [self._to_contact(entry) for entry in data["contacts"]]
        logger.info(
            "Loaded escalation contacts",
            file=self.contacts_file,
            contact_count=len(self.contacts)
        )

    def _to_contact(self, entry: Dict[str, Any]) -> Contact:
        # File contacts get a stable id derived from their phone number
        phone = normalize_phone(str(entry["phone"]))
        return Contact(
            id=uuid.uuid5(uuid.NAMESPACE_URL, f"tel:{phone}"),
            contact_name=entry["name"],
            phone_number=phone,
            escalation_order=int(entry["order"]),
            is_active=bool(entry.get("active", True)),
        )

    def _validate_contacts(self, data: Any) -> bool:
        """Validate contact file structure."""
        if not isinstance(data, dict) or not isinstance(data.get("contacts"), list):
            logger.error("Contacts validation failed: missing 'contacts' list")
            return False

        orders = set()
        for index, entry in enumerate(data["contacts"]):
            if not isinstance(entry, dict):
                logger.error("Invalid contact definition", index=index)
                return False

            if not entry.get("name"):
                logger.error("Contact missing name", index=index)
                return False

            if not entry.get("phone") or not validate_phone(str(entry["phone"])):
                logger.error("Contact missing or invalid phone", index=index, name=entry["name"])
                return False

            order = entry.get("order")
            if not isinstance(order, int) or isinstance(order, bool) or order < 1:
                logger.error("Contact has invalid order", index=index, name=entry["name"])
                return False

            if order in orders:
                logger.error("Duplicate escalation order", order=order, name=entry["name"])
                return False
            orders.add(order)

        return True

    async def _load_from_database(self) -> List[Contact]:
        session_maker = self._session_maker or get_session_maker()
        async with session_maker() as session:
            result = await session.execute(
                select(Contact)
                .where(Contact.is_active.is_(True))
                .order_by(Contact.escalation_order)
            )
            return list(result.scalars().all())

    async def get_escalation_chain(self) -> List[Contact]:
        """Active contacts in calling order."""
        if self.uses_file:
            contacts = self.contacts
        else:
            contacts = await self._load_from_database()

        chain = build_chain(contacts)
        logger.info("Retrieved escalation chain", contact_count=len(chain))
        return chain

    def get_contact_by_phone(self, phone: str) -> Optional[Contact]:
        """Get a loaded contact by phone number."""
        normalized_phone = ''.join(filter(str.isdigit, phone))

        for contact in self.contacts:
            contact_phone = ''.join(filter(str.isdigit, contact.phone_number))
            if contact_phone and contact_phone == normalized_phone:
                return contact
        return None

    def get_contacts_summary(self) -> Dict[str, Any]:
        """Get summary of contact configuration."""
        return {
            "source": "file" if self.uses_file else "database",
            "file": self.contacts_file,
            "loaded_contacts": len(self.contacts),
            "active_contacts": len([c for c in self.contacts if c.is_active]),
        }
