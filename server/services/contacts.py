"""Contact and tag store backed by the contacts table."""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TYPE_CHECKING

from constants import CONTACT_UPDATABLE_FIELDS
from core.logging import get_logger
from models.database import ContactRecord

if TYPE_CHECKING:
    from core.database import Database

logger = get_logger(__name__)


def _to_dict(record: ContactRecord) -> Dict[str, Any]:
    data = record.model_dump()
    data["custom_fields"] = dict(record.custom_fields or {})
    data["tags"] = list(record.tags or [])
    return data


class ContactStore:
    """Contact collaborator of the flow engine.

    Contacts are handed to the engine as plain dicts so that templates and
    conditions can address any column or custom field by name.
    """

    def __init__(self, database: "Database"):
        self.database = database

    async def get_contact(self, contact_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not contact_id:
            return None
        async with self.database.get_session() as session:
            record = await session.get(ContactRecord, contact_id)
            return _to_dict(record) if record else None

    async def create_contact(self, team_id: str, contact_id: Optional[str] = None,
                             **fields: Any) -> Dict[str, Any]:
        """Create a contact. Unknown keyword fields go to custom_fields."""
        custom_fields = dict(fields.pop("custom_fields", None) or {})
        tags = list(fields.pop("tags", None) or [])
        for name in list(fields):
            if name not in CONTACT_UPDATABLE_FIELDS:
                custom_fields[name] = fields.pop(name)

        record = ContactRecord(
            id=contact_id or str(uuid.uuid4()),
            team_id=team_id,
            custom_fields=custom_fields,
            tags=tags,
            **fields,
        )
        async with self.database.get_session() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
            logger.info("Contact created", contact_id=record.id, team_id=team_id)
            return _to_dict(record)

    async def add_tag(self, contact_id: str, tag_name: str, team_id: str) -> bool:
        """Add ``tag_name`` to the contact. Returns False if it was already present."""
        async with self.database.get_session() as session:
            record = await self._get_for_team(session, contact_id, team_id)
            tags = list(record.tags or [])
            if tag_name in tags:
                return False

            record.tags = tags + [tag_name]
            record.updated_at = datetime.now(timezone.utc)
            await session.commit()
            logger.debug("Tag added", contact_id=contact_id, tag=tag_name)
            return True

    async def remove_tag(self, contact_id: str, tag_name: str, team_id: str) -> bool:
        """Remove ``tag_name`` from the contact. Returns False if it was absent."""
        async with self.database.get_session() as session:
            record = await self._get_for_team(session, contact_id, team_id)
            tags = list(record.tags or [])
            if tag_name not in tags:
                return False

            record.tags = [tag for tag in tags if tag != tag_name]
            record.updated_at = datetime.now(timezone.utc)
            await session.commit()
            logger.debug("Tag removed", contact_id=contact_id, tag=tag_name)
            return True

    async def update_field(self, contact_id: str, field: str, value: Any) -> None:
        if field not in CONTACT_UPDATABLE_FIELDS:
            raise ValueError(f"Contact field is not writable: {field}")

        async with self.database.get_session() as session:
            record = await self._get(session, contact_id)
            setattr(record, field, value)
            record.updated_at = datetime.now(timezone.utc)
            await session.commit()

    async def update_custom_field(self, contact_id: str, name: str, value: Any) -> None:
        async with self.database.get_session() as session:
            record = await self._get(session, contact_id)
            record.custom_fields = {**(record.custom_fields or {}), name: value}
            record.updated_at = datetime.now(timezone.utc)
            await session.commit()

    @staticmethod
    async def _get(session, contact_id: str) -> ContactRecord:
        record = await session.get(ContactRecord, contact_id)
        if record is None:
            raise LookupError(f"Contact not found: {contact_id}")
        return record

    async def _get_for_team(self, session, contact_id: str, team_id: str) -> ContactRecord:
        record = await self._get(session, contact_id)
        if record.team_id != team_id:
            raise LookupError(f"Contact {contact_id} does not belong to team {team_id}")
        return record
