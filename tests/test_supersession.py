import logging
import time

import pytest
from sqlalchemy import event, update

from conftest import OTHER_PERSON, PERSON, TENANT, active_count, ago, make_file, upload
from doclifecycle.models.document import Document, DocumentStatus, DocumentType, ReplacementReason
from doclifecycle.services import documents, supersession
from doclifecycle.services.errors import (
    ApprovedDocumentImmutableError,
    InvalidDocumentStateError,
    NotActiveError,
    TypeMismatchError,
)


async def _fresh(db, document_type=DocumentType.INE_FRONT, *, owner=PERSON):
    return await documents.create_document(db, TENANT, owner, document_type, make_file())


async def _five_versions(db) -> list[Document]:
    versions = [await upload(db, valid_from=ago(days=50))]
    for _ in range(4):
        versions.append(await upload(db))
    for doc in versions:
        await db.refresh(doc)
    return versions


@pytest.mark.asyncio
async def test_supersede_links_old_and_new(db) -> None:
    old = await upload(db, valid_from=ago(days=10))
    new = await _fresh(db)

    await supersession.supersede_with(db, old, new, reason=ReplacementReason.EXPIRED, actor="clerk")

    assert old.status == DocumentStatus.SUPERSEDED.value
    assert old.superseded_by_id == new.id
    assert old.replacement_reason == ReplacementReason.EXPIRED.value
    assert old.replaced_at is not None
    assert old.is_active is False
    assert old.valid_to is not None
    assert new.is_active is True
    assert new.version_number == 2
    assert new.previous_version_id == old.id
    assert await active_count(db) == 1


@pytest.mark.asyncio
async def test_five_version_chain(db) -> None:
    versions = await _five_versions(db)

    assert [doc.version_number for doc in versions] == [1, 2, 3, 4, 5]
    assert [doc.is_active for doc in versions] == [False, False, False, False, True]
    for older, newer in zip(versions, versions[1:]):
        assert older.superseded_by_id == newer.id
        assert newer.previous_version_id == older.id
        assert older.status == DocumentStatus.SUPERSEDED.value

    forward = await supersession.get_supersession_chain(db, versions[0])
    assert [doc.id for doc in forward] == [doc.id for doc in versions]

    reverse = await supersession.get_reverse_supersession_chain(db, versions[-1])
    assert [doc.id for doc in reverse] == [doc.id for doc in reversed(versions)]
    assert [doc.id for doc in forward] == [doc.id for doc in reversed(reverse)]


@pytest.mark.asyncio
async def test_chain_traversal_is_a_single_statement(db, engine) -> None:
    versions = await _five_versions(db)
    statements = []

    def _record(conn, cursor, statement, parameters, context, executemany):
        if statement.strip().upper() != "BEGIN":
            statements.append(statement)

    event.listen(engine.sync_engine, "before_cursor_execute", _record)
    try:
        started = time.perf_counter()
        forward = await supersession.get_supersession_chain(db, versions[0])
        elapsed = time.perf_counter() - started
        forward_statements = list(statements)
        await supersession.get_reverse_supersession_chain(db, versions[-1])
    finally:
        event.remove(engine.sync_engine, "before_cursor_execute", _record)

    assert len(forward) == 5
    assert len(forward_statements) == 1
    assert "RECURSIVE" in forward_statements[0].upper()
    assert len(statements) == 2
    assert elapsed < 0.1


@pytest.mark.asyncio
async def test_complete_history_from_the_middle(db) -> None:
    versions = await _five_versions(db)

    history = await supersession.get_complete_history_chain(db, versions[2])
    assert [doc.version_number for doc in history] == [1, 2, 3, 4, 5]

    latest = await supersession.get_latest_version(db, versions[1])
    assert latest.id == versions[-1].id


@pytest.mark.asyncio
async def test_chain_of_single_document(db) -> None:
    doc = await upload(db)
    assert [d.id for d in await supersession.get_supersession_chain(db, doc)] == [doc.id]
    assert [d.id for d in await supersession.get_reverse_supersession_chain(db, doc)] == [doc.id]
    assert (await supersession.get_latest_version(db, doc)).id == doc.id


@pytest.mark.asyncio
async def test_refuses_to_replace_approved_document(db) -> None:
    old = await upload(db)
    await documents.approve(db, old, reviewer="analyst")
    new = await _fresh(db)

    with pytest.raises(ApprovedDocumentImmutableError) as excinfo:
        await supersession.supersede_with(db, old, new)
    assert excinfo.value.code == "document_already_verified"

    await db.refresh(old)
    await db.refresh(new)
    assert old.is_active is True
    assert old.superseded_by_id is None
    assert new.is_active is False


@pytest.mark.asyncio
async def test_replacing_approved_document_with_override(db) -> None:
    old = await upload(db)
    await documents.approve(db, old, reviewer="analyst")
    new = await _fresh(db)

    await supersession.supersede_with(db, old, new, allow_replace_approved=True)
    assert old.status == DocumentStatus.SUPERSEDED.value
    assert new.is_active is True


@pytest.mark.asyncio
async def test_refuses_type_or_owner_mismatch(db) -> None:
    old = await upload(db)
    with pytest.raises(TypeMismatchError):
        await supersession.supersede_with(db, old, await _fresh(db, DocumentType.INE_BACK))
    with pytest.raises(TypeMismatchError):
        await supersession.supersede_with(db, old, await _fresh(db, owner=OTHER_PERSON))
    assert old.is_active is True


@pytest.mark.asyncio
async def test_refuses_inactive_old_document(db) -> None:
    old = await _fresh(db)
    with pytest.raises(NotActiveError):
        await supersession.supersede_with(db, old, await _fresh(db))


@pytest.mark.asyncio
async def test_refuses_self_and_used_replacements(db) -> None:
    old = await upload(db)
    with pytest.raises(InvalidDocumentStateError):
        await supersession.supersede_with(db, old, old)

    current = await upload(db)
    await db.refresh(old)
    # old is now a superseded version and cannot be reused as a replacement
    with pytest.raises(InvalidDocumentStateError, match="fresh"):
        await supersession.supersede_with(db, current, old)


@pytest.mark.asyncio
async def test_cycle_in_chain_is_reported_not_raised(db, caplog) -> None:
    first = await upload(db)
    second = await upload(db)
    first_id, second_id = first.id, second.id
    # corrupt the data: point the head back at its predecessor
    await db.execute(
        update(Document)
        .where(Document.id == second_id)
        .values(superseded_by_id=first_id)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    with caplog.at_level(logging.WARNING, logger="doclifecycle.services.supersession"):
        chain = await supersession.get_supersession_chain(db, first)

    assert [doc.id for doc in chain] == [first_id, second_id]
    assert any("cycle" in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_chain_is_scoped_to_tenant(db) -> None:
    doc = await upload(db)
    await upload(db, tenant_id="tenant-z")
    await upload(db, tenant_id="tenant-z")
    assert [d.id for d in await supersession.get_complete_history_chain(db, doc)] == [doc.id]
