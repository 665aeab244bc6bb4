from __future__ import annotations

from .outcome import Axis, CheckOutcome, ReasonKind, Rect, rect_center

MAX_TEXT_LENGTH = 6
MAX_NON_ASCII_CHARS = 4
_PRINTABLE_ASCII_MAX = "~"


def _rect_width(rect: Rect) -> int:
    return rect[2] - rect[0]


def _rect_height(rect: Rect) -> int:
    return rect[3] - rect[1]


def is_portrait(window_rect: Rect) -> bool:
    return _rect_width(window_rect) < _rect_height(window_rect)


def check_text(text: str, outcome: CheckOutcome) -> bool:
    text = text or ""
    outcome.text = text
    if len(text) > MAX_TEXT_LENGTH:
        outcome.mark(ReasonKind.ILLEGAL_TEXT, Axis.TRANSVERSE)
        return False
    if sum(1 for ch in text if ch > _PRINTABLE_ASCII_MAX) > MAX_NON_ASCII_CHARS:
        outcome.mark(ReasonKind.ILLEGAL_TEXT, Axis.PORTRAIT)
        return False
    return True


def check_region(node_rect: Rect, window_rect: Rect, outcome: CheckOutcome) -> bool:
    """Accept only nodes in the right quarter and in the top or bottom band.

    The horizontal rule has no left bound: anything centered at or right of
    3/4 of the window width passes.
    """
    center_x, center_y = rect_center(node_rect)
    window_width = _rect_width(window_rect)
    window_height = _rect_height(window_rect)
    if center_x < window_width / 4.0 * 3:
        outcome.mark(ReasonKind.ILLEGAL_LOCATION, Axis.TRANSVERSE)
        return False
    if window_height / 4.0 < center_y < window_height / 3.0 * 2:
        outcome.mark(ReasonKind.ILLEGAL_LOCATION, Axis.PORTRAIT)
        return False
    return True


def check_size(node_rect: Rect, window_rect: Rect, outcome: CheckOutcome) -> bool:
    """Bound the node's long and short side by fractions of the window.

    Portrait windows reject at the threshold (``>=``) while landscape windows
    only reject beyond it (``>``). The asymmetry is kept as observed in the
    field heuristic.
    """
    width = _rect_width(node_rect)
    height = _rect_height(node_rect)
    long_side = max(width, height)
    short_side = min(width, height)
    window_width = _rect_width(window_rect)
    window_height = _rect_height(window_rect)
    portrait = is_portrait(window_rect)
    outcome.portrait = portrait
    if portrait:
        if long_side == 0 or long_side >= window_width // 3:
            outcome.mark(ReasonKind.ILLEGAL_SIZE, Axis.TRANSVERSE)
            return False
        if short_side == 0 or short_side >= window_height // 8:
            outcome.mark(ReasonKind.ILLEGAL_SIZE, Axis.PORTRAIT)
            return False
    else:
        if long_side == 0 or long_side > window_width // 6:
            outcome.mark(ReasonKind.ILLEGAL_SIZE, Axis.TRANSVERSE)
            return False
        if short_side == 0 or short_side > window_height // 4:
            outcome.mark(ReasonKind.ILLEGAL_SIZE, Axis.PORTRAIT)
            return False
    return True


__all__ = [
    "MAX_TEXT_LENGTH",
    "MAX_NON_ASCII_CHARS",
    "is_portrait",
    "check_text",
    "check_region",
    "check_size",
]
