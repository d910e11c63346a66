"""FORGE - Document number sequences."""
import uuid

from sqlalchemy import BigInteger, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from forge.db.base import Base


class DocumentSequence(Base):
    __tablename__ = "document_sequences"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_document_sequences_name"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    next_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)
