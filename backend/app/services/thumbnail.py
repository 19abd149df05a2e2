from __future__ import annotations

from io import BytesIO

from PIL import Image, ImageEnhance, ImageFilter, ImageOps

from app.core.config import settings

ENHANCEMENT_TYPES = ("auto", "color", "contrast", "sharpen")


def _to_rgb(image: Image.Image) -> Image.Image:
    if image.mode in {"RGBA", "LA"} or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    return image.convert("RGB")


def render_variant(image_bytes: bytes, max_dimension: int, quality: int = settings.COMPRESSION_QUALITY) -> bytes:
    input_buffer = BytesIO(image_bytes)
    output_buffer = BytesIO()

    with Image.open(input_buffer) as image:
        image = ImageOps.exif_transpose(image)
        image.thumbnail((max_dimension, max_dimension))
        _to_rgb(image).save(output_buffer, format="JPEG", quality=quality)

    return output_buffer.getvalue()


def generate_thumbnail(image_bytes: bytes) -> bytes:
    return render_variant(image_bytes, settings.THUMBNAIL_SIZE)


def generate_preview(image_bytes: bytes) -> bytes:
    return render_variant(image_bytes, settings.PREVIEW_SIZE)


def apply_enhancement(image_bytes: bytes, enhancement_type: str) -> bytes:
    if enhancement_type not in ENHANCEMENT_TYPES:
        raise ValueError(f"Unsupported enhancement type: {enhancement_type}")

    output_buffer = BytesIO()
    with Image.open(BytesIO(image_bytes)) as image:
        enhanced = _to_rgb(ImageOps.exif_transpose(image))
        if enhancement_type in {"auto", "contrast"}:
            enhanced = ImageEnhance.Contrast(enhanced).enhance(1.1)
        if enhancement_type in {"auto", "color"}:
            enhanced = ImageEnhance.Color(enhanced).enhance(1.05)
        if enhancement_type == "sharpen":
            enhanced = enhanced.filter(ImageFilter.UnsharpMask(radius=2, percent=120, threshold=3))
        enhanced.save(output_buffer, format="JPEG", quality=90)

    return output_buffer.getvalue()
