from __future__ import annotations

import logging
from io import BytesIO

import httpx
from PIL import Image

from app.services.metadata import ENHANCEMENT_SCORE_THRESHOLD, QualityAnalysis

_TIMEOUT_SECONDS = 10.0
_DOMINANT_COLOR_COUNT = 5
logger = logging.getLogger(__name__)


def dominant_colors(image_bytes: bytes, count: int = _DOMINANT_COLOR_COUNT) -> list[str]:
    with Image.open(BytesIO(image_bytes)) as image:
        sample = image.convert("RGB")
        sample.thumbnail((64, 64))
        quantized = sample.quantize(colors=count)
        palette = quantized.getpalette() or []
        colors = sorted(quantized.getcolors() or [], reverse=True)

    result = []
    for _, index in colors[:count]:
        red, green, blue = palette[index * 3 : index * 3 + 3]
        result.append(f"#{red:02x}{green:02x}{blue:02x}")
    return result


class AnalysisClient:
    """Builds the ``ai_analysis`` document for a processed photo.

    Scene types and face counts come from an optional external service; dominant
    colors and the quality score are always computed locally.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = _TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") if base_url else None
        self.timeout = timeout
        self._transport = transport

    async def _remote_analysis(self, image_bytes: bytes) -> dict | None:
        if not self.base_url:
            return None

        files = {"file": ("image.jpg", image_bytes, "image/jpeg")}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(f"{self.base_url}/analyze", files=files)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError, TypeError) as exc:
            logger.warning("analysis service request failed: %s", exc)
            return None

        if not isinstance(payload, dict):
            return None
        return payload

    async def analyze(self, image_bytes: bytes, quality: QualityAnalysis) -> dict:
        remote = await self._remote_analysis(image_bytes) or {}

        scene_types = remote.get("scene_types")
        if not isinstance(scene_types, list):
            scene_types = []
        try:
            face_count = int(remote.get("face_count") or 0)
        except (TypeError, ValueError):
            face_count = 0
        try:
            quality_score = float(remote["quality_score"]) if "quality_score" in remote else quality.score
        except (TypeError, ValueError):
            quality_score = quality.score

        return {
            "scene_types": [str(scene) for scene in scene_types],
            "dominant_colors": dominant_colors(image_bytes),
            "face_count": face_count,
            "quality_score": round(quality_score, 2),
            "recommended_print_sizes": quality.recommended_print_sizes,
            "suggestions": quality.suggestions,
            "enhancement_recommended": quality_score < ENHANCEMENT_SCORE_THRESHOLD,
        }
