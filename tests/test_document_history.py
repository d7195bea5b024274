import uuid
from datetime import timedelta

import pytest

from conftest import APPLICATION, OTHER_PERSON, PERSON, TENANT, ago, upload
from doclifecycle.models.document import DocumentType
from doclifecycle.models.documentable_relation import RelationContext
from doclifecycle.models.types import utcnow
from doclifecycle.services import document_history, documents, relations, snapshots
from doclifecycle.services.errors import DocumentNotFoundError

HEADERS = {"X-Tenant-ID": TENANT}


async def _seed(db):
    """Three INE versions for PERSON; the first fed APPLICATION and was rejected."""
    v1 = await upload(db, DocumentType.INE_FRONT, valid_from=ago(days=60))
    await snapshots.create_snapshot(db, TENANT, APPLICATION, PERSON, types=[DocumentType.INE_FRONT])
    await documents.reject(db, v1, reviewer="analyst", reason="glare")
    v2 = await upload(db, DocumentType.INE_FRONT)
    v3 = await upload(db, DocumentType.INE_FRONT)
    await documents.approve(db, v3, reviewer="analyst")
    for doc in (v1, v2, v3):
        await db.refresh(doc)
    await db.commit()
    return v1, v2, v3


@pytest.mark.asyncio
async def test_history_by_type_lists_versions_with_usage(db) -> None:
    v1, v2, v3 = await _seed(db)
    await upload(db, DocumentType.INE_FRONT, owner=OTHER_PERSON)

    entries = await document_history.history_by_type(db, TENANT, PERSON, DocumentType.INE_FRONT)

    assert {entry.document.id for entry in entries} == {v1.id, v2.id, v3.id}
    assert [entry.document.version_number for entry in entries] == [3, 2, 1]
    usage = {entry.document.id: entry.applications for entry in entries}
    assert [use.application_id for use in usage[v1.id]] == [APPLICATION.id]
    assert usage[v3.id] == []


@pytest.mark.asyncio
async def test_supersession_chain_from_any_version(db) -> None:
    v1, v2, v3 = await _seed(db)

    document, chain = await document_history.supersession_chain(db, TENANT, v2.id)
    assert document.id == v2.id
    assert [doc.id for doc in chain] == [v1.id, v2.id, v3.id]

    with pytest.raises(DocumentNotFoundError):
        await document_history.supersession_chain(db, TENANT, v2.id, owner=OTHER_PERSON)
    with pytest.raises(DocumentNotFoundError):
        await document_history.supersession_chain(db, "tenant-z", v2.id)


@pytest.mark.asyncio
async def test_valid_at_reconstructs_past_state(db) -> None:
    v1, _, v3 = await _seed(db)

    past = await document_history.valid_at(db, TENANT, PERSON, ago(days=30), DocumentType.INE_FRONT)
    assert [doc.id for doc in past] == [v1.id]
    present = await document_history.valid_at(db, TENANT, PERSON, utcnow() + timedelta(seconds=1))
    assert [doc.id for doc in present] == [v3.id]


@pytest.mark.asyncio
async def test_timeline_events_most_recent_first(db) -> None:
    v1, v2, v3 = await _seed(db)

    events = await document_history.timeline(db, TENANT, PERSON)

    by_kind = {}
    for event in events:
        by_kind.setdefault(event.event, []).append(event.document_id)
    assert sorted(by_kind[document_history.DOCUMENT_UPLOADED]) == sorted([v1.id, v2.id, v3.id])
    assert by_kind[document_history.DOCUMENT_REJECTED] == [v1.id]
    assert by_kind[document_history.DOCUMENT_APPROVED] == [v3.id]
    assert sorted(by_kind[document_history.DOCUMENT_SUPERSEDED]) == sorted([v1.id, v2.id])
    assert by_kind[document_history.DOCUMENT_USED_IN_APPLICATION] == [v1.id]
    stamps = [event.occurred_at for event in events]
    assert stamps == sorted(stamps, reverse=True)

    only_selfies = await document_history.timeline(db, TENANT, PERSON, DocumentType.SELFIE)
    assert only_selfies == []


@pytest.mark.asyncio
async def test_history_endpoint(db, client) -> None:
    v1, _, v3 = await _seed(db)

    response = client.get(
        f"/api/v1/documents/owners/person/{PERSON.id}/history/ine_front", headers=HEADERS
    )

    assert response.status_code == 200
    body = response.json()
    assert body["code"] == "ok"
    data = body["data"]
    assert data["document_type"] == "INE_FRONT"
    assert data["total"] == 3
    current = [item for item in data["items"] if item["is_currently_valid"]]
    assert [item["id"] for item in current] == [str(v3.id)]
    first = next(item for item in data["items"] if item["id"] == str(v1.id))
    assert first["applications"][0]["application_id"] == APPLICATION.id
    assert response.headers["x-request-id"]


@pytest.mark.asyncio
async def test_supersession_chain_endpoint(db, client) -> None:
    v1, v2, v3 = await _seed(db)

    response = client.get(f"/api/v1/documents/{v1.id}/supersession-chain", headers=HEADERS)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["document_id"] == str(v1.id)
    assert [item["version_number"] for item in data["items"]] == [1, 2, 3]
    assert [item["is_current"] for item in data["items"]] == [True, False, False]

    missing = client.get(f"/api/v1/documents/{uuid.uuid4()}/supersession-chain", headers=HEADERS)
    assert missing.status_code == 404
    assert missing.json()["code"] == "document_not_found"
    assert missing.json()["data"] is None


@pytest.mark.asyncio
async def test_valid_at_endpoint(db, client) -> None:
    v1, _, _ = await _seed(db)

    at = ago(days=30).replace(tzinfo=None).isoformat()
    response = client.get(
        f"/api/v1/documents/owners/PERSON/{PERSON.id}/valid-at",
        params={"at": at, "document_type": "INE_FRONT"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total"] == 1
    assert data["items"][0]["id"] == str(v1.id)
    assert data["items"][0]["is_currently_valid"] is False


@pytest.mark.asyncio
async def test_timeline_endpoint(db, client) -> None:
    await _seed(db)
    current = await documents.get_active_document(db, TENANT, PERSON, DocumentType.INE_FRONT)
    await relations.attach(db, TENANT, current, APPLICATION, RelationContext.USAGE)

    response = client.get(f"/api/v1/documents/owners/PERSON/{PERSON.id}/timeline", headers=HEADERS)

    assert response.status_code == 200
    events = [item["event"] for item in response.json()["data"]["items"]]
    assert events.count(document_history.DOCUMENT_USED_IN_APPLICATION) == 2


@pytest.mark.asyncio
async def test_tenant_header_is_required(client) -> None:
    response = client.get(f"/api/v1/documents/owners/PERSON/{PERSON.id}/timeline")
    assert response.status_code == 400
    assert response.json()["code"] == "tenant_required"


@pytest.mark.asyncio
async def test_unknown_owner_kind_and_type_are_rejected(client) -> None:
    bad_owner = client.get("/api/v1/documents/owners/INVOICE/1/timeline", headers=HEADERS)
    assert bad_owner.status_code == 422
    assert bad_owner.json()["code"] == "invalid_owner"

    bad_type = client.get(
        f"/api/v1/documents/owners/PERSON/{PERSON.id}/history/NOT_A_TYPE", headers=HEADERS
    )
    assert bad_type.status_code == 422
    body = bad_type.json()
    assert body["code"] == "invalid_document_type"
    assert "INE_FRONT" in body["details"]["allowed"]
