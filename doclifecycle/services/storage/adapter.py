from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath


class StorageAdapter(ABC):
    """Byte store for document files.

    The lifecycle engine only records the object key; reading and serving
    the bytes is somebody else's job.
    """

    provider: str = "local"

    @abstractmethod
    def write_file(self, object_key: str, content: bytes) -> None:
        pass

    @abstractmethod
    def delete_object(self, object_key: str) -> None:
        pass

    @abstractmethod
    def object_exists(self, object_key: str) -> bool:
        pass


class LocalFileSystemAdapter(StorageAdapter):
    def __init__(self, base_path: str):
        self.base_path = Path(base_path)
        self.provider = "local"
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve_safe_path(self, object_key: str) -> Path:
        if not object_key or "\\" in object_key:
            raise ValueError("Invalid object key")
        key_path = PurePosixPath(object_key)
        if key_path.is_absolute() or ".." in key_path.parts:
            raise ValueError("Invalid object key")
        base = self.base_path.resolve()
        resolved = (base / Path(object_key)).resolve()
        if resolved != base and base not in resolved.parents:
            raise ValueError("Invalid object key")
        return resolved

    def resolve_path(self, object_key: str) -> Path:
        return self._resolve_safe_path(object_key)

    def write_file(self, object_key: str, content: bytes) -> None:
        path = self._resolve_safe_path(object_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    def delete_object(self, object_key: str) -> None:
        path = self._resolve_safe_path(object_key)
        if path.exists():
            path.unlink()

    def object_exists(self, object_key: str) -> bool:
        try:
            path = self._resolve_safe_path(object_key)
        except ValueError:
            return False
        return path.exists()
