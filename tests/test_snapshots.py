import pytest

from conftest import APPLICATION, OTHER_APPLICATION, OTHER_PERSON, PERSON, TENANT, upload
from doclifecycle.core.settings import settings
from doclifecycle.models.document import DocumentType
from doclifecycle.models.documentable_relation import RelationContext
from doclifecycle.services import activation, relations, snapshots

REQUIRED = [DocumentType.INE_FRONT, DocumentType.PROOF_OF_ADDRESS, DocumentType.PAYSLIP]


@pytest.mark.asyncio
async def test_snapshot_attaches_active_documents(db) -> None:
    ine = await upload(db, DocumentType.INE_FRONT)
    address = await upload(db, DocumentType.PROOF_OF_ADDRESS)

    result = await snapshots.create_snapshot(db, TENANT, APPLICATION, PERSON, types=REQUIRED)

    assert [doc.id for doc in result.documents] == [ine.id, address.id]
    assert result.missing_types == ["PAYSLIP"]
    assert result.complete is False
    usage = await relations.relations_for_entity(db, TENANT, APPLICATION, context=RelationContext.USAGE)
    assert {link.notes for link in usage} == {"Context: SUBMISSION"}


@pytest.mark.asyncio
async def test_snapshot_is_idempotent(db) -> None:
    for doc_type in REQUIRED:
        await upload(db, doc_type)

    first = await snapshots.create_snapshot(db, TENANT, APPLICATION, PERSON, types=REQUIRED)
    second = await snapshots.create_snapshot(db, TENANT, APPLICATION, PERSON, types=REQUIRED)

    assert first.complete is True
    assert len(first.attached) == 3
    assert second.attached == []
    assert [d.id for d in second.documents] == [d.id for d in first.documents]
    links = await relations.relations_for_entity(db, TENANT, APPLICATION)
    assert len(links) == 3


@pytest.mark.asyncio
async def test_snapshot_stays_frozen_after_supersession(db) -> None:
    old = await upload(db, DocumentType.PAYSLIP)
    await snapshots.create_snapshot(db, TENANT, APPLICATION, PERSON, types=[DocumentType.PAYSLIP])

    new = await upload(db, DocumentType.PAYSLIP)
    again = await snapshots.create_snapshot(db, TENANT, APPLICATION, PERSON, types=[DocumentType.PAYSLIP])

    assert again.attached == []
    assert [d.id for d in await snapshots.snapshot_documents(db, TENANT, APPLICATION)] == [old.id]

    later = await snapshots.create_snapshot(
        db, TENANT, OTHER_APPLICATION, PERSON, types=[DocumentType.PAYSLIP], context="APPROVAL"
    )
    assert [d.id for d in later.documents] == [new.id]
    usage = await relations.relations_for_entity(db, TENANT, OTHER_APPLICATION)
    assert usage[0].notes == "Context: APPROVAL"


@pytest.mark.asyncio
async def test_snapshot_fills_in_types_uploaded_later(db) -> None:
    await upload(db, DocumentType.INE_FRONT)
    await snapshots.create_snapshot(db, TENANT, APPLICATION, PERSON, types=REQUIRED)
    assert await snapshots.has_all_required_documents(db, TENANT, APPLICATION, REQUIRED) is False

    await upload(db, DocumentType.PROOF_OF_ADDRESS)
    await upload(db, DocumentType.PAYSLIP)
    result = await snapshots.create_snapshot(
        db, TENANT, APPLICATION, PERSON, types=REQUIRED, context=snapshots.SnapshotContext.MANUAL_ATTACH
    )

    assert {d.document_type for d in result.attached} == {"PROOF_OF_ADDRESS", "PAYSLIP"}
    assert await snapshots.missing_snapshot_types(db, TENANT, APPLICATION, REQUIRED) == []
    assert await snapshots.has_all_required_documents(db, TENANT, APPLICATION, REQUIRED) is True


@pytest.mark.asyncio
async def test_snapshot_skips_inactive_documents(db) -> None:
    doc = await upload(db, DocumentType.INE_FRONT)
    await activation.deactivate(db, doc)

    result = await snapshots.create_snapshot(db, TENANT, APPLICATION, PERSON, types=[DocumentType.INE_FRONT])
    assert result.documents == []
    assert result.missing_types == ["INE_FRONT"]


def test_required_types_default_to_settings(monkeypatch) -> None:
    monkeypatch.setattr(settings, "snapshot_required_document_types", ["SELFIE", "INE_FRONT", "SELFIE"])
    assert snapshots.required_types() == ["SELFIE", "INE_FRONT"]
    assert snapshots.required_types([]) == []
    with pytest.raises(ValueError):
        snapshots.required_types(["NOPE"])


@pytest.mark.asyncio
async def test_empty_snapshot_writes_nothing(db) -> None:
    result = await snapshots.create_snapshot(db, TENANT, APPLICATION, PERSON, types=[])
    assert result.complete is True
    assert await relations.relations_for_entity(db, TENANT, APPLICATION) == []


@pytest.mark.asyncio
async def test_snapshot_is_scoped_to_each_owner(db) -> None:
    applicant = await upload(db, DocumentType.INE_FRONT)
    co_applicant = await upload(db, DocumentType.INE_FRONT, owner=OTHER_PERSON)

    first = await snapshots.create_snapshot(db, TENANT, APPLICATION, PERSON, types=[DocumentType.INE_FRONT])
    second = await snapshots.create_snapshot(
        db, TENANT, APPLICATION, OTHER_PERSON, types=[DocumentType.INE_FRONT, DocumentType.PAYSLIP]
    )

    assert [d.id for d in first.documents] == [applicant.id]
    assert [d.id for d in second.attached] == [co_applicant.id]
    assert [d.id for d in second.documents] == [co_applicant.id]
    assert second.missing_types == ["PAYSLIP"]
    assert {d.id for d in await snapshots.snapshot_documents(db, TENANT, APPLICATION)} == {
        applicant.id,
        co_applicant.id,
    }
    assert await snapshots.missing_snapshot_types(
        db, TENANT, APPLICATION, [DocumentType.PAYSLIP], owner=PERSON
    ) == ["PAYSLIP"]
    assert await snapshots.has_all_required_documents(
        db, TENANT, APPLICATION, [DocumentType.INE_FRONT], owner=OTHER_PERSON
    ) is True
