from __future__ import annotations

import mimetypes

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from fastapi.responses import FileResponse

from app.api.deps import get_storage
from app.services.storage import LocalStorageGateway, StorageGateway

router = APIRouter(prefix="/files", tags=["files"])


@router.get("/{path:path}")
async def serve_local_file(
    path: str = Path(...),
    expires: int = Query(...),
    signature: str = Query(...),
    storage: StorageGateway = Depends(get_storage),
):
    if not isinstance(storage, LocalStorageGateway):
        raise HTTPException(status_code=404, detail="Not found")
    if not storage.verify(path, expires, signature):
        raise HTTPException(status_code=403, detail="Link is invalid or has expired")

    file_path = storage.read_signed(path)
    if file_path is None:
        raise HTTPException(status_code=404, detail="Not found")

    media_type, _ = mimetypes.guess_type(file_path.name)
    return FileResponse(file_path, media_type=media_type or "application/octet-stream")
