import uuid
from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import relationship

from doclifecycle.db.base import Base
from doclifecycle.models.refs import EntityRef
from doclifecycle.models.types import UTCDateTime


class RelationContext(str, Enum):
    OWNERSHIP = "OWNERSHIP"
    USAGE = "USAGE"
    REFERENCE = "REFERENCE"


class DocumentableRelation(Base):
    __tablename__ = "documentable_relations"
    __allow_unmapped__ = True
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        UniqueConstraint(
            "document_id",
            "relatable_type",
            "relatable_id",
            "relation_context",
            name="uq_documentable_relations_link",
        ),
        CheckConstraint(
            "relation_context IN ('OWNERSHIP', 'USAGE', 'REFERENCE')",
            name="ck_documentable_relations_context",
        ),
        Index(
            "ix_documentable_relations_relatable",
            "tenant_id",
            "relatable_type",
            "relatable_id",
            "relation_context",
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False)
    document_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    relatable_type = Column(String(50), nullable=False)
    relatable_id = Column(String(64), nullable=False)
    relation_context = Column(String(20), nullable=False)
    notes = Column(Text, nullable=True)
    created_by = Column(String(64), nullable=True)
    created_by_type = Column(String(50), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, server_default=func.now())
    updated_at = Column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at = Column(UTCDateTime(), nullable=True)

    document = relationship("Document", back_populates="relations")

    @property
    def relatable(self) -> EntityRef:
        return EntityRef.of(self.relatable_type, self.relatable_id)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
