"""Image normalization ahead of the vision model call.

Keeps uploads inside the size and dimension budget the provider is billed on:
oversized images are downscaled (never upscaled) and re-encoded, HEIC/HEIF is
always transcoded to JPEG and large PNGs are turned into JPEGs.

Normalization is best-effort. Any Pillow failure yields the original buffer
unchanged, reported through ``NormalizationOutcome.changed``/``reason``.
"""
from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass

from PIL import Image
from pillow_heif import register_heif_opener

from app.core.exceptions import UnsupportedFormatError

register_heif_opener()

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 20 * 1024 * 1024
DEFAULT_MAX_DIMENSION = 2048
DEFAULT_QUALITY = 85
QUALITY_FLOOR = 50
QUALITY_STEP = 20
PNG_TO_JPEG_THRESHOLD = 500 * 1024

_SUPPORTED_SUBTYPES = ("png", "jpeg", "jpg", "webp", "heic", "heif")


@dataclass(frozen=True)
class NormalizeOptions:
    max_size: int = DEFAULT_MAX_SIZE
    max_dimension: int = DEFAULT_MAX_DIMENSION
    quality: int = DEFAULT_QUALITY


@dataclass(frozen=True)
class NormalizedImage:
    data: bytes
    mime_type: str
    width: int | None = None
    height: int | None = None


@dataclass(frozen=True)
class NormalizationOutcome:
    image: NormalizedImage
    changed: bool
    reason: str | None = None   # why the original was kept
    passes: int = 0             # encode passes performed


def is_supported_format(mime_type: str) -> bool:
    _, _, subtype = (mime_type or "").lower().partition("/")
    return any(token in subtype for token in _SUPPORTED_SUBTYPES)


def ensure_supported(mime_type: str) -> None:
    if not is_supported_format(mime_type):
        raise UnsupportedFormatError(
            f"Unsupported image format: {mime_type}. Supported formats: PNG, JPEG, WebP, HEIC"
        )


def estimate_image_tokens(image_size: int, width: int | None = None, height: int | None = None) -> int:
    """Rough vision-token estimate for an image of *image_size* bytes."""
    tokens = 85
    if width and height and min(width, height) > 512:
        tokens = 170
        longest = max(width, height)
        if longest > 2048:
            tokens += math.ceil((longest - 2048) / 512) * 85

    encoding_overhead = math.ceil(image_size / 3) * 0.75
    return tokens + math.ceil(encoding_overhead / 4)


class ImageNormalizer:
    def normalize(
        self,
        buffer: bytes,
        mime_type: str,
        options: NormalizeOptions | None = None,
    ) -> NormalizationOutcome:
        options = options or NormalizeOptions()
        mime = mime_type.lower()
        # The provider does not accept HEIC, so it is transcoded even when small.
        must_transcode = "heic" in mime or "heif" in mime

        try:
            with Image.open(io.BytesIO(buffer)) as img:
                width, height = img.size
                if (
                    not must_transcode
                    and len(buffer) <= options.max_size
                    and width <= options.max_dimension
                    and height <= options.max_dimension
                ):
                    return NormalizationOutcome(
                        image=NormalizedImage(buffer, mime_type, width, height),
                        changed=False,
                        reason="within_limits",
                    )

                data, out_mime = self._encode(img, mime, len(buffer), options.quality, options.max_dimension)
                passes = 1

                if len(data) > options.max_size and options.quality > QUALITY_FLOOR:
                    reduced = max(QUALITY_FLOOR, options.quality - QUALITY_STEP)
                    # PNG has no quality setting; the retry goes through JPEG.
                    retry_mime = "image/jpeg" if out_mime == "image/png" else out_mime
                    data, out_mime = self._encode(img, retry_mime, len(buffer), reduced, options.max_dimension)
                    passes = 2

            with Image.open(io.BytesIO(data)) as result:
                out_width, out_height = result.size
        except Exception as exc:
            logger.warning(
                "image_normalization_failed",
                extra={"mime_type": mime_type, "size": len(buffer), "error": str(exc)},
            )
            return NormalizationOutcome(
                image=NormalizedImage(buffer, mime_type),
                changed=False,
                reason=f"normalization_failed: {exc}",
            )

        logger.info(
            "image_normalized",
            extra={
                "original_size": len(buffer),
                "normalized_size": len(data),
                "mime_type": out_mime,
                "width": out_width,
                "height": out_height,
                "passes": passes,
            },
        )
        return NormalizationOutcome(
            image=NormalizedImage(data, out_mime, out_width, out_height),
            changed=True,
            passes=passes,
        )

    # ------------------------------------------------------------------ #
    #  Encoding helpers                                                    #
    # ------------------------------------------------------------------ #

    def _encode(
        self,
        img: Image.Image,
        mime: str,
        original_size: int,
        quality: int,
        max_dimension: int,
    ) -> tuple[bytes, str]:
        image = img.copy()
        if image.width > max_dimension or image.height > max_dimension:
            # thumbnail() keeps the aspect ratio and never enlarges
            image.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)

        fmt, out_mime = _output_format(mime, original_size)
        out = io.BytesIO()
        if fmt == "JPEG":
            if image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            image.save(out, format="JPEG", quality=quality, optimize=True)
        elif fmt == "WEBP":
            image.save(out, format="WEBP", quality=quality)
        else:
            image.save(out, format="PNG", optimize=True)
        return out.getvalue(), out_mime


def _output_format(mime: str, original_size: int) -> tuple[str, str]:
    """Transcoding policy: (Pillow format, resulting MIME type)."""
    if "heic" in mime or "heif" in mime:
        return "JPEG", "image/jpeg"
    if "png" in mime:
        if original_size > PNG_TO_JPEG_THRESHOLD:
            return "JPEG", "image/jpeg"
        return "PNG", "image/png"
    if "webp" in mime:
        return "WEBP", "image/webp"
    return "JPEG", "image/jpeg"
