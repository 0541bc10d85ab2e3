"""
Rectangle value type and the rect64 codec used by Picasa face entries.

A rect64 value packs four 16-bit fixed-point fractions (left, top, right, bottom),
each a multiple of 1/65536, into up to 16 hex digits. Leading zeros may be missing.
See https://gist.github.com/fbuchinger/1073823 for a description of the format.
"""

from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, ConfigDict


RECT64_DIGITS = 16
RECT64_FIELD_DIGITS = 4
RECT64_SCALE = 65536.0
RECT64_FIELD_MAX = 0xFFFF

# Picasa won't load a face tag with more than 9 digits of precision.
# Its own float precision is 6, so that is what gets written.
XMP_PRECISION = 6
_XMP_QUANTUM = Decimal(1).scaleb(-XMP_PRECISION)


def round_xmp(value: float | str) -> str:
    """
    Round a coordinate to the precision face-tag readers accept and format it.

    Halfway values round away from zero. Accepts the output of a previous call, so
    applying it twice is a no-op.

    Examples:
        >>> round_xmp(0.1 + 0.2 / 2)
        '0.200000'
        >>> round_xmp("0.1234567")
        '0.123457'
        >>> round_xmp(0x0200 / 65536)
        '0.007813'

    """
    quantized = Decimal(repr(float(value))).quantize(_XMP_QUANTUM, rounding=ROUND_HALF_UP)
    return f"{quantized:f}"


class Rectangle(BaseModel):
    """Normalized rectangle: top-left origin, width/height as fractions of the image."""

    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0
    w: float = 0.0
    h: float = 0.0

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.w / 2, self.y + self.h / 2

    def pixel_sized(self, width: int, height: int) -> tuple[int, int, int, int]:
        """
        Scale to pixel coordinates, rounding each value to the nearest integer.

        Examples:
            >>> Rectangle(x=0.25, y=0.5, w=0.5, h=0.25).pixel_sized(640, 480)
            (160, 240, 320, 120)

        """
        return (
            round(self.x * width),
            round(self.y * height),
            round(self.w * width),
            round(self.h * height),
        )

    def rounded(self) -> tuple[str, str, str, str]:
        """Return ``(x, y, w, h)`` as strings rounded with :func:`round_xmp`."""
        return round_xmp(self.x), round_xmp(self.y), round_xmp(self.w), round_xmp(self.h)


def decode_rect64(value: str) -> Rectangle:
    """
    Decode a rect64 hex string into a normalized Rectangle.

    Right/bottom are not checked against left/top; a reversed edge yields a negative
    width or height.

    Args:
        value: 1-16 hex digits, left-zero-padded to 16 when shorter.

    Returns:
        Rectangle with ``w = right - left`` and ``h = bottom - top``.

    Raises:
        ValueError: If ``value`` is not a hex string of at most 16 digits.

    Examples:
        >>> decode_rect64("1000200030004000")
        Rectangle(x=0.0625, y=0.125, w=0.125, h=0.125)

    """
    if not value or len(value) > RECT64_DIGITS:
        msg = f"rect64 value must have 1-{RECT64_DIGITS} hex digits: {value!r}"
        raise ValueError(msg)
    padded = value.rjust(RECT64_DIGITS, "0")
    left, top, right, bottom = (
        int(padded[start : start + RECT64_FIELD_DIGITS], 16) / RECT64_SCALE
        for start in range(0, RECT64_DIGITS, RECT64_FIELD_DIGITS)
    )
    return Rectangle(x=left, y=top, w=right - left, h=bottom - top)


def _quantize(fraction: float) -> int:
    return min(max(round(fraction * RECT64_SCALE), 0), RECT64_FIELD_MAX)


def encode_rect64(rect: Rectangle) -> str:
    """
    Encode a Rectangle into the 16-digit lowercase rect64 form.

    Each edge is quantized to the nearest 1/65536 and clamped to 16 bits.

    Examples:
        >>> encode_rect64(Rectangle(x=0.0625, y=0.125, w=0.125, h=0.125))
        '1000200030004000'

    """
    edges = (rect.x, rect.y, rect.x + rect.w, rect.y + rect.h)
    return "".join(f"{_quantize(edge):04x}" for edge in edges)
