"""
Decode-based image validation and re-encoding.

Only decoded pixels survive `sanitize_image`: the original container, its
metadata chunks and any trailing payload are dropped before the fresh encode.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Final

from PIL import Image

from listing_pictures.domain.errors import InvalidSignature, NotAValidImage, UploadError
from listing_pictures.security.uploads import (
    ImageFormat,
    UploadCandidate,
    sniff_format,
    validate_basics,
)

logger = logging.getLogger(__name__)

MAX_DIMENSION: Final = 2048
JPEG_QUALITY: Final = 90

DECODABLE_FORMATS: Final = tuple(fmt.value for fmt in ImageFormat)

# declared extension -> (encoder, canonical extension); anything else is JPEG
OUTPUT_FORMATS: Final[dict[str, tuple[ImageFormat, str]]] = {
    ".png": (ImageFormat.PNG, ".png"),
    ".gif": (ImageFormat.GIF, ".gif"),
    ".webp": (ImageFormat.WEBP, ".webp"),
}
DEFAULT_OUTPUT: Final = (ImageFormat.JPEG, ".jpg")

_ALPHA_MODES: Final = frozenset({"RGBA", "LA", "PA", "RGBa", "La"})
_NATIVE_MODES: Final[dict[ImageFormat, frozenset[str]]] = {
    ImageFormat.JPEG: frozenset({"L", "RGB"}),
    ImageFormat.PNG: frozenset({"1", "L", "LA", "RGB", "RGBA", "I", "I;16"}),
    ImageFormat.GIF: frozenset({"L", "RGB", "RGBA"}),
    ImageFormat.WEBP: frozenset({"RGB", "RGBA"}),
}


@dataclass(frozen=True, slots=True)
class SanitizedImage:
    """Freshly encoded image bytes ready to be written to storage."""

    data: bytes
    extension: str
    image_format: ImageFormat
    width: int
    height: int


@dataclass(frozen=True, slots=True)
class ValidationVerdict:
    """Outcome of the pipeline for a single candidate."""

    filename: str
    image: SanitizedImage | None = None
    error: UploadError | None = None

    @property
    def accepted(self) -> bool:
        return self.image is not None


def decode_image(data: bytes) -> Image.Image:
    """
    Fully decode `data` and return the loaded image.

    Raises NotAValidImage for anything the decoder refuses, including
    truncated streams and decompression bombs. Caller owns the returned image.
    """
    try:
        image = Image.open(io.BytesIO(data), formats=DECODABLE_FORMATS)
        image.load()
    except Exception as exc:
        logger.warning("Image decode failed: %s: %s", type(exc).__name__, exc)
        raise NotAValidImage("File is not a valid image or is corrupted") from exc

    width, height = image.size
    if width <= 0 or height <= 0:
        image.close()
        raise NotAValidImage("File is not a valid image or is corrupted")
    return image


def validate_content(data: bytes) -> tuple[int, int]:
    """Decode once to prove `data` is a genuine raster image; return its size."""
    image = decode_image(data)
    try:
        return image.size
    finally:
        image.close()


def fit_size(width: int, height: int, max_dimension: int = MAX_DIMENSION) -> tuple[int, int]:
    """Return the size that fits within a square box, keeping aspect ratio."""
    largest = max(width, height)
    if largest <= max_dimension:
        return width, height
    scale = max_dimension / largest
    return max(1, round(width * scale)), max(1, round(height * scale))


def output_format_for(extension: str) -> tuple[ImageFormat, str]:
    return OUTPUT_FORMATS.get((extension or "").lower(), DEFAULT_OUTPUT)


def _has_alpha(image: Image.Image) -> bool:
    if image.mode in _ALPHA_MODES:
        return True
    return image.mode == "P" and "transparency" in image.info


def _flatten_palette(image: Image.Image) -> Image.Image:
    if image.mode not in ("P", "PA", "1"):
        return image
    return image.convert("RGBA" if _has_alpha(image) else "RGB")


def _to_encoder_mode(image: Image.Image, target: ImageFormat) -> Image.Image:
    if image.mode in _NATIVE_MODES[target]:
        return image
    if target is ImageFormat.JPEG and _has_alpha(image):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        rgba.close()
        return background
    return image.convert("RGBA" if _has_alpha(image) else "RGB")


def _replace(old: Image.Image, new: Image.Image) -> Image.Image:
    if new is not old:
        old.close()
    return new


def sanitize_image(data: bytes, declared_extension: str) -> SanitizedImage:
    """
    Re-encode an image from its decoded pixels.

    Images larger than MAX_DIMENSION on either side are shrunk so that the
    larger side equals MAX_DIMENSION. The encoder follows the declared
    extension; unknown extensions and JPEG inputs are written as JPEG at
    quality 90. Animated images keep their first frame only.
    """
    target, extension = output_format_for(declared_extension)
    image = decode_image(data)
    try:
        image = _replace(image, _flatten_palette(image))

        new_size = fit_size(*image.size)
        if new_size != image.size:
            logger.info("Downsizing image from %sx%s to %sx%s", *image.size, *new_size)
            image = _replace(image, image.resize(new_size, Image.Resampling.LANCZOS))

        image = _replace(image, _to_encoder_mode(image, target))
        # Drop exif, icc, comments and text chunks carried over from the source.
        image.info = {}

        buffer = io.BytesIO()
        if target is ImageFormat.JPEG:
            image.save(buffer, format=target.value, quality=JPEG_QUALITY)
        else:
            image.save(buffer, format=target.value)
        width, height = image.size
    except (OSError, ValueError) as exc:
        logger.warning("Image re-encode failed: %s", exc)
        raise NotAValidImage("Image could not be re-encoded") from exc
    finally:
        image.close()

    return SanitizedImage(
        data=buffer.getvalue(),
        extension=extension,
        image_format=target,
        width=width,
        height=height,
    )


def process_candidate(candidate: UploadCandidate) -> SanitizedImage:
    """Run the full pipeline: basics, signature, decode, re-encode."""
    validate_basics(candidate)

    detected = sniff_format(candidate.data)
    if detected is None:
        raise InvalidSignature("File does not appear to be a valid image (invalid file signature)")

    validate_content(candidate.data)
    return sanitize_image(candidate.data, candidate.extension)


def evaluate_candidate(candidate: UploadCandidate) -> ValidationVerdict:
    """Like `process_candidate`, but report rejections instead of raising."""
    try:
        image = process_candidate(candidate)
    except UploadError as exc:
        logger.warning("Upload %s rejected: %s", candidate.filename, exc.code)
        return ValidationVerdict(filename=candidate.filename, error=exc)
    return ValidationVerdict(filename=candidate.filename, image=image)
