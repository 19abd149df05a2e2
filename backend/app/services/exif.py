from __future__ import annotations

from datetime import datetime
from io import BytesIO

import exifread

_EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"


def _to_float(value) -> float:
    if hasattr(value, "num") and hasattr(value, "den"):
        if not value.den:
            return 0.0
        return float(value.num) / float(value.den)
    return float(value)


def _dms_to_decimal(dms_values, ref: str | None) -> float | None:
    if not dms_values or len(dms_values) < 3:
        return None

    degrees = _to_float(dms_values[0])
    minutes = _to_float(dms_values[1])
    seconds = _to_float(dms_values[2])
    decimal = degrees + (minutes / 60.0) + (seconds / 3600.0)

    if ref in {"S", "W"}:
        decimal *= -1
    return round(decimal, 6)


def _get_tag_value(tags: dict, key: str):
    tag = tags.get(key)
    if tag is None:
        return None
    value = getattr(tag, "values", tag)
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _get_text(tags: dict, key: str) -> str | None:
    tag = tags.get(key)
    if tag is None:
        return None
    text = str(tag).strip().strip("\x00")
    return text or None


def _get_number(tags: dict, key: str) -> float | None:
    value = _get_tag_value(tags, key)
    if value is None:
        return None
    try:
        return _to_float(value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None


def parse_exif_datetime(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.strptime(raw, _EXIF_DATETIME_FORMAT)
    except ValueError:
        return None


def _format_shutter(exposure: float | None) -> str | None:
    if exposure is None or exposure <= 0:
        return None
    if exposure >= 1:
        return f"{exposure:g}s"
    return f"1/{round(1 / exposure)}s"


def extract_exif(image_bytes: bytes) -> dict | None:
    tags = exifread.process_file(BytesIO(image_bytes), details=False)
    if not tags:
        return None

    lat_ref = _get_text(tags, "GPS GPSLatitudeRef")
    lng_ref = _get_text(tags, "GPS GPSLongitudeRef")
    gps_lat = _dms_to_decimal(getattr(tags.get("GPS GPSLatitude"), "values", None), lat_ref)
    gps_lng = _dms_to_decimal(getattr(tags.get("GPS GPSLongitude"), "values", None), lng_ref)
    gps = None
    if gps_lat is not None and gps_lng is not None:
        gps = {"latitude": gps_lat, "longitude": gps_lng, "altitude": _get_number(tags, "GPS GPSAltitude")}

    aperture = _get_number(tags, "EXIF FNumber")
    focal_length = _get_number(tags, "EXIF FocalLength")
    iso = _get_number(tags, "EXIF ISOSpeedRatings")
    taken_at = parse_exif_datetime(_get_text(tags, "EXIF DateTimeOriginal") or _get_text(tags, "Image DateTime"))

    exif = {
        "camera": {
            "make": _get_text(tags, "Image Make"),
            "model": _get_text(tags, "Image Model"),
            "lens": _get_text(tags, "EXIF LensModel"),
        },
        "settings": {
            "iso": int(iso) if iso is not None else None,
            "aperture": f"f/{aperture:g}" if aperture else None,
            "shutter_speed": _format_shutter(_get_number(tags, "EXIF ExposureTime")),
            "focal_length": f"{focal_length:g}mm" if focal_length else None,
        },
        "taken_at": taken_at.isoformat() if taken_at else None,
        "gps": gps,
    }

    has_camera = any(exif["camera"].values())
    has_settings = any(exif["settings"].values())
    if not has_camera and not has_settings and not exif["taken_at"] and gps is None:
        return None
    return exif
