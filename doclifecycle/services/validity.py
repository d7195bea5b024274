"""Temporal validity queries.

Every document carries a half-open validity window ``[valid_from, valid_to)``.
A null ``valid_to`` means the window is still open. A window whose start is
after its end is treated as empty and reported as a data integrity anomaly.
"""

import logging
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from doclifecycle.models.document import Document, DocumentType
from doclifecycle.models.refs import EntityRef
from doclifecycle.models.types import ensure_utc, utcnow
from doclifecycle.services.errors import DataIntegrityWarning

logger = logging.getLogger(__name__)


def _report(warning: DataIntegrityWarning) -> DataIntegrityWarning:
    logger.warning(warning.message, extra={"context": warning.to_dict()})
    return warning


def inverted_interval_warning(document: Document) -> DataIntegrityWarning:
    return DataIntegrityWarning(
        "Document validity window starts after it ends",
        document_id=document.id,
        tenant_id=document.tenant_id,
        valid_from=document.valid_from,
        valid_to=document.valid_to,
    )


def has_inverted_interval(document: Document) -> bool:
    valid_from = ensure_utc(document.valid_from)
    valid_to = ensure_utc(document.valid_to)
    return valid_from is not None and valid_to is not None and valid_from > valid_to


def is_currently_valid(document: Document, now: datetime | None = None) -> bool:
    if not document.is_active:
        return False
    now = ensure_utc(now) or utcnow()
    valid_to = ensure_utc(document.valid_to)
    return valid_to is None or valid_to > now


def is_valid_at(document: Document, at: datetime) -> bool:
    at = ensure_utc(at)
    valid_from = ensure_utc(document.valid_from)
    valid_to = ensure_utc(document.valid_to)
    if valid_from is None:
        return False
    if has_inverted_interval(document):
        _report(inverted_interval_warning(document))
        return False
    return valid_from <= at and (valid_to is None or at < valid_to)


def _normalize_types(
    document_type: DocumentType | str | Iterable[DocumentType | str] | None,
) -> list[str] | None:
    if document_type is None:
        return None
    if isinstance(document_type, (str, DocumentType)):
        return [DocumentType(document_type).value]
    return [DocumentType(item).value for item in document_type]


def _window_contains(at: datetime):
    return and_(
        Document.valid_from.is_not(None),
        Document.valid_from <= at,
        or_(Document.valid_to.is_(None), Document.valid_to > at),
    )


def _inverted_window_spans(at: datetime):
    return and_(
        Document.valid_from.is_not(None),
        Document.valid_to.is_not(None),
        Document.valid_from > Document.valid_to,
        Document.valid_to <= at,
        Document.valid_from > at,
    )


async def valid_at(
    db: AsyncSession,
    tenant_id: str,
    at: datetime,
    *,
    owner: EntityRef | None = None,
    document_type: DocumentType | str | Iterable[DocumentType | str] | None = None,
) -> list[Document]:
    """Documents whose validity window contains ``at``, one per owner and type.

    Superseded versions are included, which is what makes "as of" audit
    reconstruction possible. Should overlapping windows exist, the most
    recently started one wins. Inverted windows that would otherwise span
    ``at`` are skipped and reported.
    """
    at = ensure_utc(at)
    stmt = select(Document).where(
        Document.tenant_id == tenant_id,
        Document.deleted_at.is_(None),
        or_(_window_contains(at), _inverted_window_spans(at)),
    )
    if owner is not None:
        stmt = stmt.where(
            Document.owner_type == owner.kind.value,
            Document.owner_id == owner.id,
        )
    types = _normalize_types(document_type)
    if types is not None:
        stmt = stmt.where(Document.document_type.in_(types))
    stmt = stmt.order_by(
        Document.owner_type,
        Document.owner_id,
        Document.document_type,
        Document.valid_from.desc(),
        Document.version_number.desc(),
    )
    rows = (await db.execute(stmt)).scalars().all()

    picked: dict[tuple[str, str, str], Document] = {}
    for row in rows:
        if has_inverted_interval(row):
            _report(inverted_interval_warning(row))
            continue
        key = (row.owner_type, row.owner_id, row.document_type)
        if key in picked:
            logger.warning(
                "Overlapping validity windows",
                extra={
                    "context": {
                        "tenant_id": tenant_id,
                        "kept_document_id": str(picked[key].id),
                        "ignored_document_id": str(row.id),
                        "at": at.isoformat(),
                    }
                },
            )
            continue
        picked[key] = row
    return list(picked.values())


async def currently_valid(
    db: AsyncSession,
    tenant_id: str,
    *,
    owner: EntityRef | None = None,
    document_type: DocumentType | str | Iterable[DocumentType | str] | None = None,
    now: datetime | None = None,
) -> list[Document]:
    return await valid_at(
        db,
        tenant_id,
        ensure_utc(now) or utcnow(),
        owner=owner,
        document_type=document_type,
    )


async def scan_validity_anomalies(
    db: AsyncSession,
    tenant_id: str,
    *,
    owner: EntityRef | None = None,
) -> list[DataIntegrityWarning]:
    """Find documents with inverted validity windows and log each one."""
    stmt = select(Document).where(
        Document.tenant_id == tenant_id,
        Document.valid_from.is_not(None),
        Document.valid_to.is_not(None),
        Document.valid_from > Document.valid_to,
    )
    if owner is not None:
        stmt = stmt.where(
            Document.owner_type == owner.kind.value,
            Document.owner_id == owner.id,
        )
    rows = (await db.execute(stmt.order_by(Document.created_at))).scalars().all()
    return [_report(inverted_interval_warning(row)) for row in rows]
