"""Tests for the rect64 codec and coordinate rounding."""

import pytest

from picasa_tags.rect import Rectangle, decode_rect64, encode_rect64, round_xmp


QUANTUM = 1 / 65536


def test_decode_rect64_converts_edges_to_size() -> None:
    """Left/top/right/bottom fractions become x, y, width and height."""
    rect = decode_rect64("1000200030004000")
    assert rect == Rectangle(x=0.0625, y=0.125, w=0.125, h=0.125)


def test_decode_rect64_pads_missing_leading_zeros() -> None:
    """Short values are left-padded to 16 digits before splitting."""
    rect = decode_rect64("3d600745f087703")
    assert rect.x == pytest.approx(0x03D6 / 65536)
    assert rect.y == pytest.approx(0x0074 / 65536)
    assert rect.w == pytest.approx((0x5F08 - 0x03D6) / 65536)
    assert rect.h == pytest.approx((0x7703 - 0x0074) / 65536)


def test_decode_rect64_keeps_reversed_edges_negative() -> None:
    """Right < left is not validated; the negative width passes through."""
    rect = decode_rect64("4000000020000000")
    assert rect.w == pytest.approx(-0.125)


@pytest.mark.parametrize("value", ["", "1" * 17, "xyz"])
def test_decode_rect64_rejects_invalid_values(value: str) -> None:
    """Empty, over-long and non-hex values raise ValueError."""
    with pytest.raises(ValueError, match=r"."):
        decode_rect64(value)


@pytest.mark.parametrize(
    "rect",
    [
        Rectangle(x=0.1, y=0.2, w=0.3, h=0.4),
        Rectangle(x=0.0, y=0.0, w=0.999, h=0.5),
        Rectangle(x=0.33333, y=0.66666, w=0.2, h=0.1),
    ],
)
def test_encode_then_decode_stays_within_quantization(rect: Rectangle) -> None:
    """Round-tripping through rect64 loses at most one 1/65536 step per value."""
    decoded = decode_rect64(encode_rect64(rect))

    assert decoded.x == pytest.approx(rect.x, abs=QUANTUM)
    assert decoded.y == pytest.approx(rect.y, abs=QUANTUM)
    assert decoded.w == pytest.approx(rect.w, abs=QUANTUM)
    assert decoded.h == pytest.approx(rect.h, abs=QUANTUM)


def test_round_xmp_formats_six_decimals() -> None:
    """Values are rounded and always printed with exactly six decimals."""
    assert round_xmp(0.2) == "0.200000"
    assert round_xmp(0.1234565001) == "0.123457"
    assert round_xmp(1) == "1.000000"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (0.0078125, "0.007813"),
        (-0.0078125, "-0.007813"),
        (0x0600 / 65536, "0.023438"),
        (0.0000005, "0.000001"),
    ],
)
def test_round_xmp_rounds_halfway_values_away_from_zero(value: float, expected: str) -> None:
    """Ties at the sixth decimal go away from zero, not to the even digit."""
    assert round_xmp(value) == expected


@pytest.mark.parametrize("value", [0.0, 0.1 + 0.2, 1 / 3, 0.9999999, 123.4567891, -0.0000004])
def test_round_xmp_is_idempotent(value: float) -> None:
    """Feeding the formatted string back in returns the same string."""
    once = round_xmp(value)
    assert round_xmp(once) == once


def test_rectangle_pixel_sized_rounds_to_nearest_pixel() -> None:
    """Scaling multiplies x/w by width and y/h by height, rounding each."""
    rect = Rectangle(x=0.0625, y=0.125, w=0.125, h=0.125)
    assert rect.pixel_sized(1001, 333) == (63, 42, 125, 42)


def test_rectangle_rounded_and_center() -> None:
    """rounded() formats each field; center is the midpoint of the rectangle."""
    rect = Rectangle(x=0.1, y=0.1, w=0.2, h=0.2)

    assert rect.rounded() == ("0.100000", "0.100000", "0.200000", "0.200000")
    assert rect.center == pytest.approx((0.2, 0.2))


def test_rectangle_is_immutable() -> None:
    """Rectangles are frozen value objects."""
    rect = Rectangle(x=0.1, y=0.1, w=0.2, h=0.2)
    with pytest.raises(ValueError, match=r"frozen"):
        rect.x = 0.5  # type: ignore[misc]
