"""Raw upload storage."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from docrag.errors import PermanentCapabilityError, Reason, Stage, TransientCapabilityError
from docrag.utils.files import generate_blob_path, sanitize_filename

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StoredBlob:
    url: str
    name: str
    container: str
    provider: str


class BlobStorage(Protocol):
    """Storage capability for the original uploaded bytes."""

    provider_name: str

    def upload_document(self, filename: str, content: bytes) -> StoredBlob: ...

    def delete_document(self, blob_name: str) -> bool: ...


class LocalBlobStorage:
    """Store uploads under a container directory on the local filesystem."""

    provider_name = "local"

    def __init__(self, root: Path, *, container: str = "documents") -> None:
        self.root = Path(root)
        self.container = container

    @property
    def container_path(self) -> Path:
        return self.root / self.container

    def _resolve(self, blob_name: str) -> Path:
        path = (self.container_path / blob_name).resolve()
        if self.container_path.resolve() not in path.parents:
            raise PermanentCapabilityError(
                f"blob name escapes the container: {blob_name}",
                reason=Reason.REJECTED,
                stage=Stage.STORAGE,
            )
        return path

    def upload_document(self, filename: str, content: bytes) -> StoredBlob:
        blob_name = generate_blob_path(sanitize_filename(filename))
        target = self._resolve(blob_name)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as exc:
            raise TransientCapabilityError(
                f"{self.provider_name.upper()} upload failed: {exc.strerror}",
                reason=Reason.UNAVAILABLE,
                stage=Stage.STORAGE,
            ) from exc

        LOGGER.info("Stored %s (%d bytes) as %s", filename, len(content), blob_name)
        return StoredBlob(
            url=target.as_uri(),
            name=blob_name,
            container=self.container,
            provider=self.provider_name,
        )

    def delete_document(self, blob_name: str) -> bool:
        target = self._resolve(blob_name)
        if not target.exists():
            return False
        target.unlink()
        return True
