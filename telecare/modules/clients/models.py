from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, UniqueConstraint
from telecare.core.base import Base, TimestampedTenantMixin

class ClientRecord(Base, TimestampedTenantMixin):
    __tablename__ = "client_record"
    __table_args__ = (UniqueConstraint("org_id", "mrn", name="uq_client_record_mrn"),)

    mrn: Mapped[str] = mapped_column(String(64))
    full_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, index=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
