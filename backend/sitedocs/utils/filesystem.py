from pathlib import Path
from sitedocs.config import settings


def ensure_storage_dirs(storage_root: Path | None = None) -> Path:
    path = storage_root or settings.storage_root
    path.mkdir(parents=True, exist_ok=True)
    return path


def sanitize_filename(name: str) -> str:
    keep = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789._-")
    cleaned = "".join(c if c in keep else "_" for c in name)
    return cleaned or "file"


def file_extension(name: str | None) -> str:
    if not name or "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()
