from doclifecycle.models.document import (
    Document,
    DocumentCategory,
    DocumentStatus,
    DocumentType,
    ReplacementReason,
)
from doclifecycle.models.documentable_relation import DocumentableRelation, RelationContext
from doclifecycle.models.refs import EntityKind, EntityRef

__all__ = [
    "Document",
    "DocumentCategory",
    "DocumentStatus",
    "DocumentType",
    "ReplacementReason",
    "DocumentableRelation",
    "RelationContext",
    "EntityKind",
    "EntityRef",
]
