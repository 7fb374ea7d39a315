import io
import time
import logging
from typing import List, Optional, Tuple

from PIL import Image, ImageFilter, ImageOps, UnidentifiedImageError

from schemas.process_schemas import FillColour, ProcessParameters, ResizeMode
from services.dimensions import resolve_target_dimensions
from services.errors import EncodeFailure, InvalidImage

logger = logging.getLogger(__name__)

RESAMPLE_FILTER = Image.Resampling.LANCZOS


def decode_image(data: bytes) -> Image.Image:
    """Decodes uploaded bytes into a fully loaded RGBA image."""
    if not data:
        raise InvalidImage("empty file")
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, EOFError, SyntaxError, ValueError) as e:
        raise InvalidImage(e)

    if img.mode != 'RGBA':
        try:
            img = img.convert('RGBA')
        except ValueError as e:
            raise InvalidImage(f"unsupported pixel mode {img.mode}: {e}")
    return img


def fill_image(img: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """Scales and centre-crops img so it covers exactly size."""
    return ImageOps.fit(img, size, method=RESAMPLE_FILTER, centering=(0.5, 0.5))


def fit_within(img: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """
    Scales img down to fit inside size, keeping its aspect ratio.
    Images that already fit are returned unscaled.
    """
    max_width, max_height = size
    src_width, src_height = img.size
    if src_width <= max_width and src_height <= max_height:
        return img.copy()

    src_ratio = src_width / src_height
    if src_ratio > max_width / max_height:
        new_width = max_width
        new_height = max(1, int(new_width / src_ratio))
    else:
        new_height = max_height
        new_width = max(1, int(new_height * src_ratio))
    return img.resize((new_width, new_height), RESAMPLE_FILTER)


def letterbox_image(img: Image.Image, size: Tuple[int, int], fill_colour: FillColour) -> Image.Image:
    """
    Centres img, scaled to fit, on a canvas of exactly size filled with fill_colour.
    The offset uses integer halves, so odd leftovers put the extra pixel on the
    right/bottom.
    """
    target_width, target_height = size
    canvas = Image.new('RGBA', size, fill_colour.rgba)
    scaled = fit_within(img, size)
    offset = (target_width // 2 - scaled.width // 2, target_height // 2 - scaled.height // 2)
    canvas.alpha_composite(scaled, dest=offset)
    return canvas


def resize_image(
    img: Image.Image,
    size: Tuple[int, int],
    mode: ResizeMode,
    fill_colour: Optional[FillColour] = None,
) -> Image.Image:
    if mode is ResizeMode.FIT:
        return fill_image(img, size)
    if mode is ResizeMode.STRETCH:
        if fill_colour is not None:
            return letterbox_image(img, size, fill_colour)
        return img.resize(size, RESAMPLE_FILTER)
    raise ValueError(f"Unhandled resize mode: {mode!r}")


def _clamp_channel(value: float) -> int:
    v = int(value + 0.5)
    if v > 255:
        return 255
    if v < 0:
        return 0
    return v


def contrast_lut(percentage: float) -> List[int]:
    """
    Lookup table for a contrast change of percentage (-100..100, 0 is no change).
    Pixel values are pulled towards or pushed away from mid-grey; +100
    thresholds at mid-grey.
    """
    percentage = min(max(percentage, -100.0), 100.0)
    v = (100.0 + percentage) / 100.0
    lut = []
    for i in range(256):
        if 0 <= v <= 1:
            lut.append(_clamp_channel((0.5 + (i / 255.0 - 0.5) * v) * 255.0))
        elif 1 < v < 2:
            lut.append(_clamp_channel((0.5 + (i / 255.0 - 0.5) * (1 / (2.0 - v))) * 255.0))
        else:
            lut.append(int(i / 255.0 + 0.5) * 255)
    return lut


def adjust_contrast(img: Image.Image, percentage: float) -> Image.Image:
    """Applies contrast_lut to the colour channels of an RGBA image; alpha is kept."""
    if percentage == 0:
        return img.copy()
    lut = contrast_lut(percentage)
    return img.point(lut * 3 + list(range(256)))


def sharpen(img: Image.Image, sigma: float) -> Image.Image:
    """Unsharp mask: adds back the difference between img and its Gaussian blur."""
    if sigma <= 0:
        return img.copy()
    return img.filter(ImageFilter.UnsharpMask(radius=sigma, percent=100, threshold=0))


def encode_png(img: Image.Image) -> bytes:
    buffer = io.BytesIO()
    try:
        img.save(buffer, format='PNG')
    except (OSError, ValueError, KeyError) as e:
        raise EncodeFailure(e)
    return buffer.getvalue()


def process_image(data: bytes, params: ProcessParameters) -> bytes:
    """
    Runs the full pipeline for one upload:
    1. Decode the upload
    2. Resolve target dimensions (aspect lock + clamp)
    3. Resize: fill-crop, letterbox or stretch
    4. Contrast, then sharpen
    5. Encode as PNG
    """
    start = time.perf_counter()

    def elapsed_ms() -> float:
        return round((time.perf_counter() - start) * 1000, 2)

    src_img = decode_image(data)
    logger.info(f"Decode: {elapsed_ms()}ms", extra={"source_size": list(src_img.size)})

    target_size = resolve_target_dimensions(params.width, params.height, src_img.size, params.aspect)
    logger.info(
        f"Resize parameters: targetW={target_size[0]}, targetH={target_size[1]}",
        extra={"aspect": params.aspect.value, "resize": params.resize.value},
    )

    dst_img = resize_image(src_img, target_size, params.resize, params.fill_colour)
    logger.info(f"Resize: {elapsed_ms()}ms")

    dst_img = adjust_contrast(dst_img, params.contrast)
    dst_img = sharpen(dst_img, params.sharpen_sigma)
    logger.info(f"Adjustments: {elapsed_ms()}ms")

    png = encode_png(dst_img)
    logger.info(f"Encode: {elapsed_ms()}ms", extra={"output_bytes": len(png)})
    return png
