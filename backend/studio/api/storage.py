"""Serves artifacts written by the local storage backend."""

import mimetypes

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import FileResponse

from studio.api.deps import Services
from studio.services.storage_service import LocalStorageService

router = APIRouter()


@router.get("/files/{storage_key:path}")
async def get_file(storage_key: str, services: Services) -> FileResponse:
    if "local" not in services.storage.names():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Local storage not enabled")
    backend = services.storage.get("local")
    if not isinstance(backend, LocalStorageService):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Local storage not enabled")

    try:
        file_path = backend.get_file_path(storage_key)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    if not file_path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    media_type = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
    return FileResponse(path=str(file_path), media_type=media_type, filename=file_path.name)
