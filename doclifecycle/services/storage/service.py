import hashlib
import mimetypes
import re
import uuid
from dataclasses import dataclass
from pathlib import Path

from doclifecycle.core.settings import settings
from doclifecycle.models.document import DocumentType
from doclifecycle.models.refs import EntityRef
from doclifecycle.services.storage.adapter import LocalFileSystemAdapter, StorageAdapter


@dataclass(frozen=True, slots=True)
class FileDescriptor:
    file_name: str
    file_path: str
    mime_type: str | None
    file_size: int
    checksum: str
    storage_disk: str = "local"


def get_storage_adapter() -> StorageAdapter:
    return LocalFileSystemAdapter(base_path=settings.local_upload_dir)


def _safe_filename(filename: str | None) -> str:
    name = Path(filename or "").name
    cleaned = re.sub(r"[^a-zA-Z0-9_.-]", "_", name)
    return cleaned or "document"


def generate_object_key(
    tenant_id: str,
    owner: EntityRef,
    document_type: DocumentType | str,
    object_id: uuid.UUID,
    filename: str | None,
) -> str:
    safe_tenant = re.sub(r"[^a-zA-Z0-9_-]", "_", tenant_id)
    safe_owner = re.sub(r"[^a-zA-Z0-9_-]", "_", owner.id)
    return (
        f"tenants/{safe_tenant}/{owner.kind.value.lower()}/{safe_owner}/"
        f"documents/{DocumentType(document_type).value.lower()}/{object_id}/{_safe_filename(filename)}"
    )


def store_document_file(
    adapter: StorageAdapter,
    *,
    tenant_id: str,
    owner: EntityRef,
    document_type: DocumentType | str,
    filename: str | None,
    content: bytes,
    mime_type: str | None = None,
) -> FileDescriptor:
    """Write the bytes before any metadata is recorded and describe them."""
    object_key = generate_object_key(tenant_id, owner, document_type, uuid.uuid4(), filename)
    adapter.write_file(object_key, content)
    return FileDescriptor(
        file_name=_safe_filename(filename),
        file_path=object_key,
        mime_type=mime_type or mimetypes.guess_type(filename or "")[0],
        file_size=len(content),
        checksum=hashlib.sha256(content).hexdigest(),
        storage_disk=adapter.provider,
    )
