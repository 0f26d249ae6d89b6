import mimetypes

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from sitedocs.dependencies import get_object_storage
from sitedocs.errors import Forbidden, NotFound
from sitedocs.services.storage_service import ObjectStorage

# Mounted at the root so `settings.public_base_url` points here.
router = APIRouter(prefix="/files", tags=["files"])


@router.get("/{path:path}")
async def download_file(
    path: str,
    expires: int | None = None,
    signature: str | None = None,
    storage: ObjectStorage = Depends(get_object_storage),
):
    if expires is None or not signature or not storage.verify_signed_url(path, expires, signature):
        raise Forbidden("Invalid or expired link")

    full_path = storage.local_path(path)
    if not full_path.is_file():
        raise NotFound("File not found")

    media_type, _ = mimetypes.guess_type(full_path.name)
    return FileResponse(
        path=str(full_path),
        filename=full_path.name,
        media_type=media_type or "application/octet-stream",
    )
