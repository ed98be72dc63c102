from __future__ import annotations

import hashlib
import io
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from PIL import Image, UnidentifiedImageError

from svc_vton.domain.enums import GenerationErrorCode, ImageValidationErrorCode
from svc_vton.domain.errors import GenerationServiceError


@dataclass(frozen=True)
class ImageConstraints:
    allowed_mime_types: Tuple[str, ...]
    max_bytes: int
    min_width: int
    min_height: int


@dataclass(frozen=True)
class ImageMetadata:
    width: int
    height: int
    size: int
    content_type: str
    checksum: str  # sha256 hex of the full payload


@dataclass(frozen=True)
class ImageValidationFailure:
    code: ImageValidationErrorCode
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


ImageValidationResult = Union[ImageMetadata, ImageValidationFailure]


def normalize_mime(content_type: Optional[str]) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def _read_dimensions(data: bytes) -> Optional[Tuple[int, int]]:
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError):
        return None
    if not width or not height:
        return None
    return int(width), int(height)


def validate_image(
    data: Optional[bytes],
    content_type: Optional[str],
    constraints: ImageConstraints,
) -> ImageValidationResult:
    """
    Checks run in order and stop at the first failure:
      size > 0 -> mime allow-list -> max bytes -> decodable dimensions -> min resolution.
    Same bytes + same constraints always produce the same outcome and checksum.
    """
    size = len(data or b"")
    if not size:
        return ImageValidationFailure(
            code=ImageValidationErrorCode.missing_file,
            message="Image file is required.",
        )

    mime = normalize_mime(content_type)
    allowed = [normalize_mime(m) for m in constraints.allowed_mime_types]
    if mime not in allowed:
        return ImageValidationFailure(
            code=ImageValidationErrorCode.unsupported_mime,
            message=f"File must be one of: {', '.join(constraints.allowed_mime_types)}.",
            details={"mimeType": mime, "allowed": list(constraints.allowed_mime_types)},
        )

    if size > constraints.max_bytes:
        return ImageValidationFailure(
            code=ImageValidationErrorCode.exceeds_max_size,
            message=f"File exceeds the maximum size of {constraints.max_bytes} bytes.",
            details={"size": size, "maxBytes": constraints.max_bytes},
        )

    dims = _read_dimensions(data)
    if dims is None:
        return ImageValidationFailure(
            code=ImageValidationErrorCode.invalid_dimensions,
            message="Unable to determine image dimensions.",
        )

    width, height = dims
    if width < constraints.min_width or height < constraints.min_height:
        return ImageValidationFailure(
            code=ImageValidationErrorCode.below_min_resolution,
            message=f"Image must be at least {constraints.min_width}x{constraints.min_height} pixels.",
            details={
                "width": width,
                "height": height,
                "minWidth": constraints.min_width,
                "minHeight": constraints.min_height,
            },
        )

    return ImageMetadata(
        width=width,
        height=height,
        size=size,
        content_type=mime,
        checksum=hashlib.sha256(data).hexdigest(),
    )


def normalize_retention(value: Any, *, minimum: int, maximum: int, default: int) -> int:
    if value is None:
        return default

    # bool is an int subclass; a checkbox value is not a retention window
    if isinstance(value, bool) or not isinstance(value, int):
        raise GenerationServiceError(
            GenerationErrorCode.invalid_request,
            "Retention must be provided as an integer value.",
            context={"value": value},
        )

    if value < minimum or value > maximum:
        raise GenerationServiceError(
            GenerationErrorCode.invalid_request,
            f"Retention duration must be between {minimum} and {maximum} hours.",
            context={"value": value},
        )
    return value
