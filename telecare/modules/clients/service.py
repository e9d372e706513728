import logging
import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from telecare.modules.clients.models import ClientRecord
from telecare.modules.clients.repository import ClientRecordRepository

logger = logging.getLogger(__name__)

def generate_mrn() -> str:
    # last group of a uuid4: 12 hex chars
    return str(uuid.uuid4()).split("-")[-1]

class ClientRecordService:
    def __init__(self, session: AsyncSession):
        self.records = ClientRecordRepository(session)

    async def resolve(self, org_id: str, *, email: str | None, full_name: str | None = None, phone: str | None = None) -> ClientRecord | None:
        """Find the org's record for this contact, creating one with a fresh MRN when missing."""
        if not email:
            return None
        record = await self.records.get_by_email(org_id, email)
        if record:
            return record
        record = await self.records.create(org_id, mrn=generate_mrn(), email=email, full_name=full_name, phone=phone)
        logger.info(f"Created client record mrn={record.mrn} for org={org_id}")
        return record

    async def contact_email(self, org_id: str, record_id) -> str | None:
        if record_id is None:
            return None
        record = await self.records.get(org_id, record_id)
        return record.email if record else None
