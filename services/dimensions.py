# services/dimensions.py
from typing import Tuple

from schemas.process_schemas import AspectRatio
from services.errors import InvalidParameter

# Neither side of a processed image may exceed this
MAX_DIMENSION = 2048

# (numerator, denominator) as width:height
FIXED_RATIOS = {
    AspectRatio.WIDE_16_9: (16, 9),
    AspectRatio.TALL_9_16: (9, 16),
    AspectRatio.STANDARD_4_3: (4, 3),
    AspectRatio.PORTRAIT_3_4: (3, 4),
    AspectRatio.SQUARE: (1, 1),
}


def clamp_to_max_dimension(width: int, height: int, max_dimension: int = MAX_DIMENSION) -> Tuple[int, int]:
    """
    Scales (width, height) down proportionally so neither exceeds max_dimension.
    The width clamp runs first and the height clamp works on its result, so a
    pair that is too large on both axes is scaled twice.
    """
    if width > max_dimension:
        height = int(height * max_dimension / width)
        width = max_dimension
    if height > max_dimension:
        width = int(width * max_dimension / height)
        height = max_dimension
    return width, height


def resolve_target_dimensions(
    width: int,
    height: int,
    original_size: Tuple[int, int],
    aspect: AspectRatio = AspectRatio.NONE,
) -> Tuple[int, int]:
    """
    Works out the output size for a request.

    Fixed ratios use integer arithmetic and pick the largest box of roughly that
    ratio inside width x height; truncation means the result is a best-effort
    fit rather than an exact ratio. "original" keeps the source image's ratio
    while filling one side of the requested box.
    """
    if width <= 0 or height <= 0:
        raise InvalidParameter(f"width and height must be positive, got {width}x{height}")

    if aspect is AspectRatio.ORIGINAL:
        original_width, original_height = original_size
        if original_width <= 0 or original_height <= 0:
            raise InvalidParameter(f"source image has no area ({original_width}x{original_height})")
        original_ratio = original_width / original_height
        requested_ratio = width / height
        if requested_ratio > original_ratio:
            target_width, target_height = int(height * original_ratio), height
        else:
            target_width, target_height = width, int(width / original_ratio)
    elif aspect in FIXED_RATIOS:
        ratio_w, ratio_h = FIXED_RATIOS[aspect]
        target_width = min(width, height * ratio_w // ratio_h)
        target_height = min(height, width * ratio_h // ratio_w)
    elif aspect is AspectRatio.NONE:
        target_width, target_height = width, height
    else:
        raise ValueError(f"Unhandled aspect ratio: {aspect!r}")

    target_width, target_height = clamp_to_max_dimension(target_width, target_height)

    if target_width < 1 or target_height < 1:
        raise InvalidParameter(
            f"{width}x{height} with aspect '{aspect.value}' resolves to an empty "
            f"{target_width}x{target_height} image"
        )
    return target_width, target_height
