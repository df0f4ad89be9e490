"""Reference image checks and resizing to the requested video resolution.

The remote API expects the starting frame to match the output size, so images
are letterboxed/pillarboxed to fit without cropping.
"""

import io
from dataclasses import dataclass
from typing import Tuple

from PIL import Image, UnidentifiedImageError

from videogen.errors import ValidationError
from videogen.jobs.models import ReferenceImage

ACCEPTED_CONTENT_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp")

_FORMAT_CONTENT_TYPES = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
}


@dataclass
class ContainFit:
    scale: float
    draw_width: int
    draw_height: int
    dx: int
    dy: int


def parse_resolution(resolution: str) -> Tuple[int, int]:
    """Parse 'WxH' into (width, height)."""
    parts = resolution.split("x")
    if len(parts) != 2:
        raise ValidationError(f"Invalid resolution: {resolution}")
    try:
        width, height = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValidationError(f"Invalid resolution: {resolution}")
    if width <= 0 or height <= 0:
        raise ValidationError(f"Invalid resolution: {resolution}")
    return width, height


def compute_contain_fit(
    src_width: int, src_height: int, target_width: int, target_height: int
) -> ContainFit:
    """Scale to fit inside the target while preserving aspect ratio, centered."""
    if min(src_width, src_height, target_width, target_height) <= 0:
        raise ValidationError("All dimensions must be positive")
    scale = min(target_width / src_width, target_height / src_height)
    draw_width = round(src_width * scale)
    draw_height = round(src_height * scale)
    return ContainFit(
        scale=scale,
        draw_width=draw_width,
        draw_height=draw_height,
        dx=(target_width - draw_width) // 2,
        dy=(target_height - draw_height) // 2,
    )


def check_reference_image(image: ReferenceImage, max_bytes: int) -> None:
    if image.content_type not in ACCEPTED_CONTENT_TYPES:
        raise ValidationError(
            f"Unsupported image type '{image.content_type}'. "
            f"Valid: {list(ACCEPTED_CONTENT_TYPES)}"
        )
    if len(image.data) > max_bytes:
        raise ValidationError(
            f"Image file size must be less than {max_bytes // (1024 * 1024)}MB"
        )
    if not image.data:
        raise ValidationError("Image file is empty")


def fit_to_resolution(
    image: ReferenceImage,
    resolution: str,
    background: str = "#000",
    fmt: str = "PNG",
) -> ReferenceImage:
    """Return a copy of the image resized and padded to exactly `resolution`."""
    width, height = parse_resolution(resolution)
    try:
        src = Image.open(io.BytesIO(image.data))
        src.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValidationError(f"Failed to load image: {exc}") from exc

    fit = compute_contain_fit(src.width, src.height, width, height)
    mode = "RGBA" if background == "transparent" else "RGB"
    fill = (0, 0, 0, 0) if background == "transparent" else background
    canvas = Image.new(mode, (width, height), fill)
    resized = src.convert(mode).resize((fit.draw_width, fit.draw_height), Image.LANCZOS)
    canvas.paste(resized, (fit.dx, fit.dy))

    fmt = fmt.upper()
    if fmt == "JPEG" and canvas.mode == "RGBA":
        canvas = canvas.convert("RGB")
    buf = io.BytesIO()
    canvas.save(buf, format=fmt)

    stem = image.filename.rsplit(".", 1)[0] if "." in image.filename else image.filename
    ext = "jpg" if fmt == "JPEG" else fmt.lower()
    return ReferenceImage(
        data=buf.getvalue(),
        filename=f"{stem or 'image'}_{width}x{height}.{ext}",
        content_type=_FORMAT_CONTENT_TYPES.get(fmt, "image/png"),
    )
