from __future__ import annotations

from typing import Any


class DocumentLifecycleError(ValueError):
    """Base error for document lifecycle operations.

    Carries a stable ``code`` for API clients plus a ``details`` dict. The
    ``retryable`` flag tells callers whether repeating the same request can
    succeed without changing its input.
    """

    code: str = "document_error"
    status_code: int = 400
    retryable: bool = False

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message

    def as_detail(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": {**self.details, "retryable": self.retryable},
        }


class ConstraintViolation(DocumentLifecycleError):
    code = "document_conflict"
    status_code = 409
    retryable = True


class NotActiveError(DocumentLifecycleError):
    code = "document_not_active"
    status_code = 409


class TypeMismatchError(DocumentLifecycleError):
    code = "document_type_mismatch"
    status_code = 422


class ApprovedDocumentImmutableError(DocumentLifecycleError):
    code = "document_already_verified"
    status_code = 409


class OrphanReferenceError(DocumentLifecycleError):
    code = "document_orphan_reference"
    status_code = 404


class InvalidDocumentStateError(DocumentLifecycleError):
    code = "document_invalid_state"
    status_code = 409


class DocumentNotFoundError(DocumentLifecycleError):
    code = "document_not_found"
    status_code = 404


class DataIntegrityWarning(UserWarning):
    """Non-fatal anomaly found while reading document data.

    Logged and queued for reconciliation; never raised to callers.
    """

    def __init__(self, message: str, *, document_id: Any, tenant_id: str | None = None, **fields: Any) -> None:
        super().__init__(message)
        self.message = message
        self.document_id = document_id
        self.tenant_id = tenant_id
        self.fields = fields

    def to_dict(self) -> dict[str, Any]:
        return {
            "warning": type(self).__name__,
            "message": self.message,
            "document_id": str(self.document_id),
            "tenant_id": self.tenant_id,
            **{key: str(value) if value is not None else None for key, value in self.fields.items()},
        }
