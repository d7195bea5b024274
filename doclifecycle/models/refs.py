from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class EntityKind(str, Enum):
    PERSON = "PERSON"
    PERSON_IDENTIFICATION = "PERSON_IDENTIFICATION"
    PERSON_ADDRESS = "PERSON_ADDRESS"
    PERSON_EMPLOYMENT = "PERSON_EMPLOYMENT"
    COMPANY = "COMPANY"
    COMPANY_ADDRESS = "COMPANY_ADDRESS"
    APPLICATION = "APPLICATION"


@dataclass(frozen=True, slots=True)
class EntityRef:
    """Opaque typed pointer to an owner or relatable entity.

    The engine never loads the entity itself; ``id`` is stored as text so
    integer and UUID keys from other services fit the same column.
    """

    kind: EntityKind
    id: str

    @classmethod
    def of(cls, kind: EntityKind | str, entity_id: Any) -> "EntityRef":
        try:
            resolved = kind if isinstance(kind, EntityKind) else EntityKind(str(kind).strip().upper())
        except ValueError as exc:
            allowed = ", ".join(k.value for k in EntityKind)
            raise ValueError(f"Unsupported entity kind {kind!r}. Allowed: {allowed}") from exc
        cleaned = str(entity_id).strip() if entity_id is not None else ""
        if not cleaned:
            raise ValueError("entity id is required")
        return cls(kind=resolved, id=cleaned)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"
