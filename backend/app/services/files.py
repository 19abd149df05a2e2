from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import PurePosixPath, PureWindowsPath
from uuid import uuid4

_INVALID_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_REPEATED_UNDERSCORES = re.compile(r"_{2,}")
_MAX_STEM_LENGTH = 100


def sanitize_filename(filename: str | None) -> str:
    if not filename or not filename.strip():
        return "unknown"

    # Browsers on Windows may send a full client path.
    basename = PureWindowsPath(PurePosixPath(filename.strip()).name).name
    path = PurePosixPath(basename)
    extension = path.suffix.lower()
    stem = path.stem

    stem = _INVALID_FILENAME_CHARS.sub("", stem).replace(" ", "_")
    stem = _REPEATED_UNDERSCORES.sub("_", stem).strip("_")
    if not stem:
        stem = "file"

    return stem[:_MAX_STEM_LENGTH] + _INVALID_FILENAME_CHARS.sub("", extension)


def unique_storage_name(filename: str | None) -> str:
    sanitized = PurePosixPath(sanitize_filename(filename))
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"{timestamp}_{uuid4().hex[:8]}_{sanitized.stem}{sanitized.suffix}"
