from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

from app.core.config import settings
from app.services.catalog import CatalogStore
from app.services.storage import StorageGateway

logger = logging.getLogger(__name__)


@dataclass
class DownloadLink:
    photo_id: UUID
    url: str
    expires_at: datetime
    filename: str
    file_size_bytes: int


class DownloadLinkIssuer:
    def __init__(
        self,
        catalog: CatalogStore,
        storage: StorageGateway,
        ttl_minutes: int = settings.DOWNLOAD_LINK_TTL_MINUTES,
    ) -> None:
        self.catalog = catalog
        self.storage = storage
        self.ttl_minutes = ttl_minutes

    async def issue(self, photo_id: UUID, owner_id: UUID, variant: str = "original") -> DownloadLink | None:
        photo = await self.catalog.get_owned(photo_id, owner_id)
        if photo is None:
            return None

        path = (photo.storage_paths or {}).get(variant)
        if not path:
            logger.warning("download variant missing photo_id=%s variant=%s", photo_id, variant)
            return None

        issued_at = datetime.now(timezone.utc)
        url = await self.storage.temporary_url(path, photo.storage_container, self.ttl_minutes)
        if url is None:
            logger.warning("download object missing photo_id=%s path=%s", photo_id, path)
            return None

        return DownloadLink(
            photo_id=photo.id,
            url=url,
            expires_at=issued_at + timedelta(minutes=self.ttl_minutes),
            filename=photo.original_filename,
            file_size_bytes=photo.file_size_bytes,
        )
