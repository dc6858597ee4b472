# SubVault: Vault - Blob Storage
#
# Storage collaborators for the sealed vault. They only ever see the
# EncryptedBlob; plaintext never reaches this module.

import logging
import os
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from .models import EncryptedBlob, now_ms

logger = logging.getLogger(__name__)


@runtime_checkable
class BlobStore(Protocol):
    """Where the sealed vault lives (local file, remote service, memory)."""

    def load(self) -> Optional[EncryptedBlob]:
        """Return the stored blob, or None if no vault has been created yet."""
        ...

    def save(self, blob: EncryptedBlob) -> None:
        """Durably store ``blob``. Raises on failure."""
        ...


class FileBlobStore:
    """
    Stores the blob as JSON in a single file.

    Writes go to a temporary sibling first and are moved into place with
    os.replace(), so a crash mid-write leaves the previous vault intact.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        # 0-byte files are not valid vaults
        return self.path.exists() and self.path.stat().st_size > 0

    def read_text(self) -> Optional[str]:
        if not self.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def load(self) -> Optional[EncryptedBlob]:
        """
        Raises:
            ValueError: The file exists but is not a valid blob
        """
        text = self.read_text()
        if text is None:
            return None
        return EncryptedBlob.from_json(text)

    def save(self, blob: EncryptedBlob) -> None:
        self.write_text(blob.to_json())

    def write_text(self, text: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            with tmp.open("w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            # Owner read/write only
            os.chmod(tmp, 0o600)
            os.replace(tmp, self.path)
        except OSError:
            if tmp.exists():
                tmp.unlink()
            raise
        logger.debug("Vault blob written to %s", self.path)


class MemoryBlobStore:
    """In-process store. Useful for tests and for embedding behind a remote API."""

    def __init__(self, blob: Optional[EncryptedBlob] = None):
        self.blob = blob
        self.saves = 0

    def load(self) -> Optional[EncryptedBlob]:
        return self.blob

    def save(self, blob: EncryptedBlob) -> None:
        self.blob = blob
        self.saves += 1


def export_filename(timestamp_ms: Optional[int] = None) -> str:
    """Download name for an exported blob."""
    return f"SubVault_Export_{timestamp_ms if timestamp_ms is not None else now_ms()}.json"
