"""
Write-once, read-many blob storage for fetched page snapshots.

Keys are ``(analysis_id, kind)``; a locator is the opaque string a store hands
back from ``write`` and accepts in ``read``. A write returns only once the
bytes are durable, so any read that happens after the fetcher signals
completion sees the full value.
"""
import os
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Tuple

from sitecraft.features.analysis.models.asset import AssetKind


class AssetExists(Exception):
    pass


class AssetMissing(Exception):
    pass


class AssetStore(ABC):
    @abstractmethod
    def write(self, analysis_id: str, kind: AssetKind, data: bytes, content_type: Optional[str] = None) -> str:
        """Store ``data`` once; raises ``AssetExists`` on a second write of the same key."""

    @abstractmethod
    def read(self, locator: str) -> bytes:
        """Return the stored bytes; raises ``AssetMissing`` if nothing is stored there."""

    @abstractmethod
    def discard(self, analysis_id: str) -> None:
        """Remove everything stored for an analysis (used when a fetch fails midway)."""

    def read_text(self, locator: str, encoding: str = "utf-8") -> str:
        return self.read(locator).decode(encoding, errors="replace")


class LocalAssetStore(AssetStore):
    """Filesystem store: ``<root>/<analysis_id>/<kind>``."""

    def __init__(self, root: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, analysis_id: str, kind: AssetKind) -> Path:
        return self.root / analysis_id / kind.value

    def write(self, analysis_id: str, kind: AssetKind, data: bytes, content_type: Optional[str] = None) -> str:
        target = self._path(analysis_id, kind)
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists():
            raise AssetExists(f"{kind.value} already stored for analysis {analysis_id}")

        # Write to a temp file in the same directory, fsync, then hard-link into
        # place; link fails if the target exists, so a racing writer never overwrites
        fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), prefix=f".{kind.value}.")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            try:
                os.link(tmp_path, target)
            except FileExistsError as e:
                raise AssetExists(f"{kind.value} already stored for analysis {analysis_id}") from e
        finally:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)

        return f"{analysis_id}/{kind.value}"

    def read(self, locator: str) -> bytes:
        path = (self.root / locator).resolve()
        if self.root.resolve() not in path.parents:
            raise AssetMissing(f"Locator outside of asset root: {locator}")
        if not path.is_file():
            raise AssetMissing(f"No asset stored at {locator}")
        return path.read_bytes()

    def discard(self, analysis_id: str) -> None:
        shutil.rmtree(self.root / analysis_id, ignore_errors=True)


class MemoryAssetStore(AssetStore):
    """In-process store for tests and eager (single-process) runs."""

    def __init__(self):
        self._blobs: Dict[str, Tuple[bytes, Optional[str]]] = {}
        self._lock = threading.Lock()

    def write(self, analysis_id: str, kind: AssetKind, data: bytes, content_type: Optional[str] = None) -> str:
        locator = f"memory://{analysis_id}/{kind.value}"
        with self._lock:
            if locator in self._blobs:
                raise AssetExists(f"{kind.value} already stored for analysis {analysis_id}")
            self._blobs[locator] = (bytes(data), content_type)
        return locator

    def read(self, locator: str) -> bytes:
        with self._lock:
            if locator not in self._blobs:
                raise AssetMissing(f"No asset stored at {locator}")
            return self._blobs[locator][0]

    def discard(self, analysis_id: str) -> None:
        prefix = f"memory://{analysis_id}/"
        with self._lock:
            for locator in [loc for loc in self._blobs if loc.startswith(prefix)]:
                del self._blobs[locator]

    def __len__(self) -> int:
        return len(self._blobs)
