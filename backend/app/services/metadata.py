from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from io import BytesIO
from math import gcd

from PIL import Image, UnidentifiedImageError

from app.core.config import settings
from app.core.errors import ProcessingError
from app.services.exif import extract_exif

logger = logging.getLogger(__name__)

DEFAULT_DPI = 72
DEFAULT_COLOR_SPACE = "sRGB"
MIN_PRINTABLE_SIDE = 100
ENHANCEMENT_SCORE_THRESHOLD = 6.0
ENHANCEMENT_SUGGESTION = "Consider using AI enhancement to improve image quality"

# (min width, min height) -> print sizes recommended at that resolution
QUALITY_TIERS: list[tuple[int, int, list[str]]] = [
    (3000, 2400, ["4x6", "5x7", "8x10"]),
    (2400, 1800, ["4x6", "5x7"]),
    (1800, 1200, ["4x6"]),
]

_ALPHA_FORMATS = {"PNG", "GIF", "WEBP", "TIFF"}
_COLOR_SPACES = {
    "CMYK": "CMYK",
    "L": "Grayscale",
    "LA": "Grayscale",
    "1": "Grayscale",
    "I;16": "Grayscale",
    "LAB": "Lab",
}


@dataclass
class ImageMetadata:
    width: int
    height: int
    orientation: str
    aspect_ratio: str
    dpi: int
    color_space: str
    has_transparency: bool
    format: str | None
    exif: dict | None = None

    def as_image_data(self) -> dict:
        data = asdict(self)
        data.pop("exif")
        data.pop("format")
        return data


@dataclass
class QualityAnalysis:
    score: float
    metrics: dict[str, float] = field(default_factory=dict)
    recommended_print_sizes: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def orientation_for(width: int, height: int) -> str:
    if width > height:
        return "landscape"
    if height > width:
        return "portrait"
    return "square"


def aspect_ratio_for(width: int, height: int) -> str:
    divisor = gcd(width, height)
    if divisor == 0:
        return "0:0"
    return f"{width // divisor}:{height // divisor}"


def _read_dpi(image: Image.Image) -> int:
    dpi = image.info.get("dpi")
    if isinstance(dpi, (tuple, list)) and dpi:
        dpi = dpi[0]
    try:
        value = int(round(float(dpi)))
    except (TypeError, ValueError):
        return DEFAULT_DPI
    return value if value > 0 else DEFAULT_DPI


def analyze_quality(width: int, height: int) -> QualityAnalysis:
    megapixels = (width * height) / 1_000_000
    score = round(min(10.0, megapixels * 2), 2)

    recommended: list[str] = []
    for min_width, min_height, sizes in QUALITY_TIERS:
        if width >= min_width and height >= min_height:
            recommended = list(sizes)
            break

    suggestions = [ENHANCEMENT_SUGGESTION] if score < ENHANCEMENT_SCORE_THRESHOLD else []
    return QualityAnalysis(
        score=score,
        metrics={"resolution": score, "megapixels": round(megapixels, 2)},
        recommended_print_sizes=recommended,
        suggestions=suggestions,
    )


class MetadataExtractor:
    """Derives image data and EXIF from raw bytes.

    Undecodable or oversized images raise ``ProcessingError``; callers decide
    whether that becomes a per-file validation failure or a failed record.
    """

    def __init__(self, max_pixels: int = settings.MAX_IMAGE_PIXELS) -> None:
        self.max_pixels = max_pixels

    def extract(self, image_bytes: bytes) -> ImageMetadata:
        try:
            with Image.open(BytesIO(image_bytes)) as image:
                width, height = image.size
                if width * height > self.max_pixels:
                    raise ProcessingError("Image is too large to process safely.")
                image.verify()
                metadata = ImageMetadata(
                    width=width,
                    height=height,
                    orientation=orientation_for(width, height),
                    aspect_ratio=aspect_ratio_for(width, height),
                    dpi=_read_dpi(image),
                    color_space=_COLOR_SPACES.get(image.mode, DEFAULT_COLOR_SPACE),
                    has_transparency=(image.format or "").upper() in _ALPHA_FORMATS,
                    format=image.format,
                )
        except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
            raise ProcessingError("File is not a valid image or is corrupted.") from exc
        except (OSError, SyntaxError, ValueError) as exc:
            raise ProcessingError("File is not a valid image or is corrupted.") from exc

        if width < MIN_PRINTABLE_SIDE or height < MIN_PRINTABLE_SIDE:
            logger.warning("small image width=%s height=%s may not be suitable for printing", width, height)

        metadata.exif = self.extract_exif(image_bytes)
        return metadata

    def extract_exif(self, image_bytes: bytes) -> dict | None:
        try:
            return extract_exif(image_bytes)
        except (KeyError, IndexError, TypeError, ValueError, ZeroDivisionError) as exc:
            logger.warning("exif extraction failed error=%s", exc)
            return None

    def analyze_quality(self, width: int, height: int) -> QualityAnalysis:
        return analyze_quality(width, height)
