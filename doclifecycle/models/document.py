import uuid
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import relationship

from doclifecycle.db.base import Base
from doclifecycle.models.refs import EntityKind, EntityRef
from doclifecycle.models.types import UTCDateTime


class DocumentType(str, Enum):
    INE_FRONT = "INE_FRONT"
    INE_BACK = "INE_BACK"
    PASSPORT = "PASSPORT"
    CURP_DOC = "CURP_DOC"
    RFC_CONSTANCIA = "RFC_CONSTANCIA"
    DRIVER_LICENSE_FRONT = "DRIVER_LICENSE_FRONT"
    DRIVER_LICENSE_BACK = "DRIVER_LICENSE_BACK"
    PROOF_OF_ADDRESS = "PROOF_OF_ADDRESS"
    UTILITY_BILL = "UTILITY_BILL"
    BANK_STATEMENT_ADDRESS = "BANK_STATEMENT_ADDRESS"
    LEASE_AGREEMENT = "LEASE_AGREEMENT"
    PROPERTY_DEED = "PROPERTY_DEED"
    PAYSLIP = "PAYSLIP"
    BANK_STATEMENT = "BANK_STATEMENT"
    TAX_RETURN = "TAX_RETURN"
    IMSS_STATEMENT = "IMSS_STATEMENT"
    EMPLOYMENT_LETTER = "EMPLOYMENT_LETTER"
    INCOME_AFFIDAVIT = "INCOME_AFFIDAVIT"
    CONSTITUTIVE_ACT = "CONSTITUTIVE_ACT"
    POWER_OF_ATTORNEY = "POWER_OF_ATTORNEY"
    TAX_ID_COMPANY = "TAX_ID_COMPANY"
    FISCAL_SITUATION = "FISCAL_SITUATION"
    LEGAL_REP_ID = "LEGAL_REP_ID"
    SHAREHOLDER_STRUCTURE = "SHAREHOLDER_STRUCTURE"
    SELFIE = "SELFIE"
    SIGNATURE = "SIGNATURE"
    OTHER = "OTHER"


class DocumentCategory(str, Enum):
    IDENTITY = "IDENTITY"
    ADDRESS = "ADDRESS"
    INCOME = "INCOME"
    COMPANY = "COMPANY"
    VERIFICATION = "VERIFICATION"
    OTHER = "OTHER"


class DocumentStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SUPERSEDED = "SUPERSEDED"


class ReplacementReason(str, Enum):
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    UPDATED = "UPDATED"
    BETTER_QUALITY = "BETTER_QUALITY"


TYPES_BY_CATEGORY: dict[DocumentCategory, tuple[DocumentType, ...]] = {
    DocumentCategory.IDENTITY: (
        DocumentType.INE_FRONT,
        DocumentType.INE_BACK,
        DocumentType.PASSPORT,
        DocumentType.CURP_DOC,
        DocumentType.RFC_CONSTANCIA,
        DocumentType.DRIVER_LICENSE_FRONT,
        DocumentType.DRIVER_LICENSE_BACK,
    ),
    DocumentCategory.ADDRESS: (
        DocumentType.PROOF_OF_ADDRESS,
        DocumentType.UTILITY_BILL,
        DocumentType.BANK_STATEMENT_ADDRESS,
        DocumentType.LEASE_AGREEMENT,
        DocumentType.PROPERTY_DEED,
    ),
    DocumentCategory.INCOME: (
        DocumentType.PAYSLIP,
        DocumentType.BANK_STATEMENT,
        DocumentType.TAX_RETURN,
        DocumentType.IMSS_STATEMENT,
        DocumentType.EMPLOYMENT_LETTER,
        DocumentType.INCOME_AFFIDAVIT,
    ),
    DocumentCategory.COMPANY: (
        DocumentType.CONSTITUTIVE_ACT,
        DocumentType.POWER_OF_ATTORNEY,
        DocumentType.TAX_ID_COMPANY,
        DocumentType.FISCAL_SITUATION,
        DocumentType.LEGAL_REP_ID,
        DocumentType.SHAREHOLDER_STRUCTURE,
    ),
    DocumentCategory.VERIFICATION: (DocumentType.SELFIE,),
    DocumentCategory.OTHER: (DocumentType.SIGNATURE, DocumentType.OTHER),
}

SENSITIVE_TYPES = frozenset(
    {
        DocumentType.INE_FRONT,
        DocumentType.INE_BACK,
        DocumentType.PASSPORT,
        DocumentType.CURP_DOC,
        DocumentType.RFC_CONSTANCIA,
        DocumentType.DRIVER_LICENSE_FRONT,
        DocumentType.DRIVER_LICENSE_BACK,
        DocumentType.SELFIE,
        DocumentType.BANK_STATEMENT,
        DocumentType.PAYSLIP,
    }
)


def category_for_type(document_type: DocumentType | str) -> DocumentCategory:
    resolved = DocumentType(document_type)
    for category, types in TYPES_BY_CATEGORY.items():
        if resolved in types:
            return category
    return DocumentCategory.OTHER


def _sql_in(values) -> str:
    return ", ".join(f"'{value.value}'" for value in values)


class Document(Base):
    __tablename__ = "documents"
    __allow_unmapped__ = True
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        CheckConstraint(
            f"status IN ({_sql_in(DocumentStatus)})",
            name="ck_documents_status",
        ),
        CheckConstraint(
            f"owner_type IN ({_sql_in(EntityKind)})",
            name="ck_documents_owner_type",
        ),
        CheckConstraint("version_number >= 1", name="ck_documents_version_positive"),
        CheckConstraint(
            "is_active = false OR valid_to IS NULL",
            name="ck_documents_active_open_interval",
        ),
        CheckConstraint(
            "status <> 'SUPERSEDED' OR (is_active = false AND valid_to IS NOT NULL)",
            name="ck_documents_superseded_closed",
        ),
        CheckConstraint(
            "superseded_by_id IS NULL OR superseded_by_id <> id",
            name="ck_documents_no_self_supersede",
        ),
        Index(
            "ix_documents_owner_type_active",
            "tenant_id",
            "owner_type",
            "owner_id",
            "document_type",
            "is_active",
        ),
        Index(
            "ix_documents_owner_type_validity",
            "tenant_id",
            "owner_type",
            "owner_id",
            "document_type",
            "valid_from",
            "valid_to",
        ),
        Index(
            "ux_documents_one_active",
            "tenant_id",
            "owner_type",
            "owner_id",
            "document_type",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    owner_type = Column(String(50), nullable=False)
    owner_id = Column(String(64), nullable=False)
    document_type = Column(String(50), nullable=False)
    category = Column(String(32), nullable=False)

    file_name = Column(String(255), nullable=False)
    file_path = Column(String(1024), nullable=False)
    storage_disk = Column(String(32), nullable=False, default="local", server_default="local")
    mime_type = Column(String(100), nullable=True)
    file_size = Column(BigInteger, nullable=True)
    checksum = Column(String(128), nullable=True)

    status = Column(
        String(20),
        nullable=False,
        default=DocumentStatus.PENDING.value,
        server_default=DocumentStatus.PENDING.value,
    )
    is_active = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    valid_from = Column(UTCDateTime(), nullable=True)
    valid_to = Column(UTCDateTime(), nullable=True)
    superseded_by_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("documents.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    previous_version_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("documents.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    version_number = Column(Integer, nullable=False, default=1, server_default="1")
    replaced_at = Column(UTCDateTime(), nullable=True)
    replacement_reason = Column(String(50), nullable=True)

    rejection_reason = Column(Text, nullable=True)
    reviewed_at = Column(UTCDateTime(), nullable=True)
    reviewed_by = Column(String(64), nullable=True)

    is_sensitive = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    # "metadata" is reserved on declarative classes
    document_metadata = Column("metadata", JSON, nullable=True)
    notes = Column(Text, nullable=True)

    created_by = Column(String(64), nullable=True)
    updated_by = Column(String(64), nullable=True)
    deleted_by = Column(String(64), nullable=True)
    created_at = Column(UTCDateTime(), nullable=False, server_default=func.now())
    updated_at = Column(
        UTCDateTime(),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    deleted_at = Column(UTCDateTime(), nullable=True)

    relations = relationship(
        "DocumentableRelation",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def owner(self) -> EntityRef:
        return EntityRef.of(self.owner_type, self.owner_id)

    @property
    def type_enum(self) -> DocumentType:
        return DocumentType(self.document_type)

    @property
    def is_superseded(self) -> bool:
        return self.status == DocumentStatus.SUPERSEDED.value

    @property
    def is_approved(self) -> bool:
        return self.status == DocumentStatus.APPROVED.value

    @property
    def is_rejected(self) -> bool:
        return self.status == DocumentStatus.REJECTED.value

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def same_slot(self, other: "Document") -> bool:
        """True when both documents compete for the same active slot."""
        return (
            self.tenant_id == other.tenant_id
            and self.owner_type == other.owner_type
            and self.owner_id == other.owner_id
            and self.document_type == other.document_type
        )

    def __repr__(self) -> str:
        return (
            f"<Document {self.id} {self.document_type} v{self.version_number} "
            f"status={self.status} active={self.is_active}>"
        )
