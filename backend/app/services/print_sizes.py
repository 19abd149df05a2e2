from __future__ import annotations

from uuid import UUID

from app.models.photo import Photo
from app.services.catalog import CatalogStore

# (min width, min height) in pixels, compared against raw width/height.
PRINT_SIZE_THRESHOLDS: dict[str, tuple[int, int]] = {
    "4x6": (1200, 1800),
    "5x7": (1500, 2100),
    "8x10": (2400, 3000),
    "11x14": (3300, 4200),
}
DEFAULT_PRINT_SIZE = "4x6"


def threshold_for(print_size: str | None) -> tuple[int, int]:
    key = (print_size or "").strip().lower()
    return PRINT_SIZE_THRESHOLDS.get(key, PRINT_SIZE_THRESHOLDS[DEFAULT_PRINT_SIZE])


def meets_threshold(width: int, height: int, print_size: str) -> bool:
    min_width, min_height = threshold_for(print_size)
    return width >= min_width and height >= min_height


class PrintSuitabilityResolver:
    def __init__(self, catalog: CatalogStore) -> None:
        self.catalog = catalog

    async def eligible_photos(self, owner_id: UUID, print_size: str) -> list[Photo]:
        min_width, min_height = threshold_for(print_size)
        return await self.catalog.list_print_eligible(owner_id, min_width, min_height)
