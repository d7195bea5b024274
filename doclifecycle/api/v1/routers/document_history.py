from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from doclifecycle.api import deps
from doclifecycle.db.session import get_db
from doclifecycle.models.document import Document, DocumentType
from doclifecycle.models.refs import EntityRef
from doclifecycle.models.types import ensure_utc, utcnow
from doclifecycle.schemas.documents import (
    ApplicationUsageDTO,
    DocumentDTO,
    DocumentHistoryItem,
    DocumentHistoryResponse,
    SupersessionChainItem,
    SupersessionChainResponse,
    TimelineEventDTO,
    TimelineResponse,
    ValidAtResponse,
)
from doclifecycle.services import document_history
from doclifecycle.services.validity import is_currently_valid

router = APIRouter(prefix="/documents", tags=["document-history"])


def _parse_type(value: str | None) -> DocumentType | None:
    if value is None:
        return None
    try:
        return DocumentType(value.strip().upper())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "code": "invalid_document_type",
                "message": f"Unknown document type {value!r}",
                "details": {"allowed": [t.value for t in DocumentType]},
            },
        ) from exc


def _document_dto(model, document: Document, now: datetime, **extra):
    return model.model_validate(document).model_copy(
        update={"is_currently_valid": is_currently_valid(document, now), **extra}
    )


@router.get(
    "/owners/{owner_type}/{owner_id}/history/{document_type}",
    response_model=DocumentHistoryResponse,
    summary="Every version of a document type for an owner",
)
async def history_by_type(
    document_type: str,
    owner: EntityRef = Depends(deps.get_owner_ref),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> DocumentHistoryResponse:
    doc_type = _parse_type(document_type)
    entries = await document_history.history_by_type(db, ctx.tenant_id, owner, doc_type)
    now = utcnow()
    items = [
        _document_dto(
            DocumentHistoryItem,
            entry.document,
            now,
            applications=[ApplicationUsageDTO.model_validate(use) for use in entry.applications],
        )
        for entry in entries
    ]
    return DocumentHistoryResponse(document_type=doc_type.value, items=items, total=len(items))


@router.get(
    "/{document_id}/supersession-chain",
    response_model=SupersessionChainResponse,
    summary="Complete version chain around a document",
)
async def supersession_chain(
    document_id: UUID,
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> SupersessionChainResponse:
    document, chain = await document_history.supersession_chain(db, ctx.tenant_id, document_id)
    now = utcnow()
    items = [
        _document_dto(SupersessionChainItem, doc, now, is_current=doc.id == document.id)
        for doc in chain
    ]
    return SupersessionChainResponse(
        document_id=document.id,
        document_type=document.document_type,
        items=items,
        total=len(items),
    )


@router.get(
    "/owners/{owner_type}/{owner_id}/valid-at",
    response_model=ValidAtResponse,
    summary="Documents that were valid at a point in time",
)
async def valid_at(
    at: datetime = Query(..., description="ISO-8601 instant; naive values are read as UTC"),
    document_type: str | None = Query(default=None),
    owner: EntityRef = Depends(deps.get_owner_ref),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> ValidAtResponse:
    doc_type = _parse_type(document_type)
    at = ensure_utc(at)
    rows = await document_history.valid_at(db, ctx.tenant_id, owner, at, doc_type)
    now = utcnow()
    items = [_document_dto(DocumentDTO, doc, now) for doc in rows]
    return ValidAtResponse(
        at=at,
        document_type=doc_type.value if doc_type else None,
        items=items,
        total=len(items),
    )


@router.get(
    "/owners/{owner_type}/{owner_id}/timeline",
    response_model=TimelineResponse,
    summary="Document events for an owner, most recent first",
)
async def timeline(
    document_type: str | None = Query(default=None),
    owner: EntityRef = Depends(deps.get_owner_ref),
    ctx: deps.TenantContext = Depends(deps.get_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> TimelineResponse:
    doc_type = _parse_type(document_type)
    events = await document_history.timeline(db, ctx.tenant_id, owner, doc_type)
    items = [TimelineEventDTO.model_validate(event) for event in events]
    return TimelineResponse(
        document_type=doc_type.value if doc_type else None,
        items=items,
        total=len(items),
    )
