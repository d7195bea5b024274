from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from doclifecycle.services.errors import ConstraintViolation


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run a block of metadata writes inside a SAVEPOINT.

    A failure rolls back only the block, leaving the caller's outer
    transaction usable. Unique/check violations detected by the database
    surface as :class:`ConstraintViolation`.
    """
    try:
        async with db.begin_nested():
            yield db
    except IntegrityError as exc:
        raise ConstraintViolation(
            "Concurrent document update rejected by the database; retry the request",
            details={"constraint": _constraint_name(exc)},
        ) from exc


def _constraint_name(exc: IntegrityError) -> str | None:
    orig = getattr(exc, "orig", None)
    diag = getattr(orig, "diag", None)
    name = getattr(diag, "constraint_name", None)
    if name:
        return name
    # asyncpg exposes the name directly on the wrapped exception
    return getattr(getattr(orig, "__cause__", None), "constraint_name", None)
