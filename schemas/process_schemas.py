# schemas/process_schemas.py
import enum
import logging
from typing import Any, Mapping, Optional, Tuple

from pydantic import BaseModel, conint

from services.errors import InvalidParameter

logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 2048
DEFAULT_HEIGHT = 1536
DEFAULT_CONTRAST = 20.0
DEFAULT_SHARPNESS = 1.5

# Integer fields outside the signed 64-bit range are treated as unparseable
MAX_FORM_INTEGER = 2 ** 63 - 1


class AspectRatio(str, enum.Enum):
    NONE = ""
    WIDE_16_9 = "16:9"
    TALL_9_16 = "9:16"
    STANDARD_4_3 = "4:3"
    PORTRAIT_3_4 = "3:4"
    SQUARE = "1:1"
    ORIGINAL = "original"


class ResizeMode(str, enum.Enum):
    STRETCH = ""  # default: stretch, or letterbox when a fill colour is given
    FIT = "fit"


class FillColour(BaseModel):
    r: conint(ge=0, le=255) = 0
    g: conint(ge=0, le=255) = 0
    b: conint(ge=0, le=255) = 0

    @property
    def rgba(self) -> Tuple[int, int, int, int]:
        return (self.r, self.g, self.b, 255)


class ProcessParameters(BaseModel):
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    contrast: float = DEFAULT_CONTRAST
    sharpness: float = DEFAULT_SHARPNESS
    aspect: AspectRatio = AspectRatio.NONE
    resize: ResizeMode = ResizeMode.STRETCH
    fill_colour: Optional[FillColour] = None

    @property
    def sharpen_sigma(self) -> float:
        return 1 + self.sharpness / 100.0

    @classmethod
    def from_form(cls, form: Mapping[str, Any], strict: bool = False) -> "ProcessParameters":
        """
        Builds parameters from raw multipart form values.

        Blank fields take their defaults. Anything that cannot be understood
        (non-numeric numbers, unknown enum values, out of range colour channels)
        falls back to the default with a warning, or raises InvalidParameter
        when strict is set.
        """
        parser = _FormParser(form, strict)

        width = parser.integer("width", DEFAULT_WIDTH)
        if width <= 0:
            width = DEFAULT_WIDTH
        height = parser.integer("height", DEFAULT_HEIGHT)
        if height <= 0:
            height = DEFAULT_HEIGHT

        fill_colour = None
        channels = [parser.raw(name) for name in ("fillColourR", "fillColourG", "fillColourB")]
        if any(channels):
            fill_colour = FillColour(
                r=parser.channel("fillColourR"),
                g=parser.channel("fillColourG"),
                b=parser.channel("fillColourB"),
            )

        return cls(
            width=width,
            height=height,
            contrast=parser.number("contrast", DEFAULT_CONTRAST),
            sharpness=parser.number("sharpness", DEFAULT_SHARPNESS),
            aspect=parser.choice("aspect", AspectRatio, AspectRatio.NONE),
            resize=parser.choice("resize", ResizeMode, ResizeMode.STRETCH),
            fill_colour=fill_colour,
        )


class _FormParser:
    def __init__(self, form: Mapping[str, Any], strict: bool):
        self.form = form
        self.strict = strict

    def raw(self, name: str) -> str:
        value = self.form.get(name)
        if value is None or not isinstance(value, str):
            return ""
        return value.strip()

    def _reject(self, name: str, value: str, expected: str, fallback: Any) -> Any:
        if self.strict:
            raise InvalidParameter(f"{name}={value!r} ({expected})")
        logger.warning(f"Ignoring {name}={value!r} ({expected}); using {fallback!r}.")
        return fallback

    def integer(self, name: str, default: int) -> int:
        value = self.raw(name)
        if not value:
            return default
        try:
            number = int(value)
        except ValueError:
            return self._reject(name, value, "expected an integer", default)
        if not -MAX_FORM_INTEGER - 1 <= number <= MAX_FORM_INTEGER:
            return self._reject(name, value, "integer out of range", default)
        return number

    def number(self, name: str, default: float) -> float:
        value = self.raw(name)
        if not value:
            return default
        try:
            number = float(value)
        except ValueError:
            return self._reject(name, value, "expected a number", default)
        if number != number or number in (float("inf"), float("-inf")):
            return self._reject(name, value, "expected a finite number", default)
        return number

    def channel(self, name: str) -> int:
        channel = self.integer(name, 0)
        if not 0 <= channel <= 255:
            return self._reject(name, str(channel), "expected 0-255", min(max(channel, 0), 255))
        return channel

    def choice(self, name: str, enum_cls, default):
        value = self.raw(name)
        try:
            return enum_cls(value)
        except ValueError:
            allowed = ", ".join(repr(member.value) for member in enum_cls if member.value)
            return self._reject(name, value, f"expected one of {allowed}", default)
