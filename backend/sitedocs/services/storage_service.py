"""
Object storage collaborator. Paths are relative keys such as
`daily-reports/<report>/additional/before/<file>`; the local backend maps them
under `settings.storage_root`.
"""
import logging
import os
import shutil
import time
from pathlib import Path
from urllib.parse import quote, urlencode

from sitedocs.config import settings
from sitedocs.errors import StorageError
from sitedocs.utils.filesystem import ensure_storage_dirs
from sitedocs.utils.security import sign_path, verify_path_signature

logger = logging.getLogger("sitedocs.storage")


class ObjectStorage:
    def upload(self, path: str, content: bytes, content_type: str | None = None) -> str:
        raise NotImplementedError

    def move(self, src: str, dest: str):
        raise NotImplementedError

    def remove(self, paths: list[str]):
        raise NotImplementedError

    def exists(self, path: str) -> bool:
        raise NotImplementedError

    def local_path(self, path: str) -> Path:
        """Filesystem location of an object, for backends that can serve files directly."""
        raise NotImplementedError

    def public_url(self, path: str) -> str:
        return settings.public_base_url.rstrip("/") + "/" + quote(path)

    def signed_url(self, path: str, ttl_seconds: int | None = None, now: float | None = None) -> str:
        ttl = settings.signed_url_ttl_seconds if ttl_seconds is None else ttl_seconds
        expires_at = int((now if now is not None else time.time()) + ttl)
        signature = sign_path(path, settings.signing_secret, expires_at)
        return f"{self.public_url(path)}?{urlencode({'expires': expires_at, 'signature': signature})}"

    def verify_signed_url(self, path: str, expires_at: int, signature: str, now: float | None = None) -> bool:
        return verify_path_signature(path, settings.signing_secret, expires_at, signature, now=now)


class LocalObjectStorage(ObjectStorage):
    def __init__(self, root: Path | None = None):
        self._root = root

    @property
    def root(self) -> Path:
        # Resolved per call so a changed data_path takes effect without a restart.
        return ensure_storage_dirs(self._root or settings.storage_root)

    def _resolve(self, path: str) -> Path:
        root = self.root.resolve()
        full = (root / path).resolve()
        if full != root and root not in full.parents:
            raise StorageError(f"Invalid storage path: {path}")
        return full

    def upload(self, path: str, content: bytes, content_type: str | None = None) -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
        except OSError as exc:
            logger.error("Upload failed for %s: %s", path, exc)
            raise StorageError(f"Upload failed: {path}") from exc
        return path

    def move(self, src: str, dest: str):
        source = self._resolve(src)
        target = self._resolve(dest)
        if not source.exists():
            raise StorageError(f"Object not found: {src}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(target))
        except OSError as exc:
            logger.error("Move failed %s -> %s: %s", src, dest, exc)
            raise StorageError(f"Move failed: {src}") from exc

    def remove(self, paths: list[str]):
        failed = []
        for path in paths:
            target = self._resolve(path)
            try:
                os.remove(target)
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("Remove failed for %s: %s", path, exc)
                failed.append(path)
        if failed:
            raise StorageError(f"Remove failed for {len(failed)} object(s)")

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def local_path(self, path: str) -> Path:
        return self._resolve(path)


storage = LocalObjectStorage()


def get_storage() -> ObjectStorage:
    return storage
