from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession
from telecare.core.errors import storage_errors
from telecare.modules.clients.models import ClientRecord

class ClientRecordRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    @storage_errors
    async def create(self, org_id: str, **data) -> ClientRecord:
        obj = ClientRecord(org_id=org_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    @storage_errors
    async def get_by_email(self, org_id: str, email: str) -> ClientRecord | None:
        q = select(ClientRecord).where(
            and_(ClientRecord.org_id == org_id,
                 func.lower(ClientRecord.email) == email.lower(),
                 ClientRecord.deleted_at.is_(None))
        ).order_by(ClientRecord.created_at.asc()).limit(1)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    @storage_errors
    async def get(self, org_id: str, record_id) -> ClientRecord | None:
        q = select(ClientRecord).where(
            and_(ClientRecord.id == record_id,
                 ClientRecord.org_id == org_id,
                 ClientRecord.deleted_at.is_(None))
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()
