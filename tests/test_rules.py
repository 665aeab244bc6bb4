import pytest

from skip_automator import rules
from skip_automator.outcome import Axis, CheckOutcome, Reason, ReasonKind
from skip_automator.rules import check_region, check_size, check_text, is_portrait

PORTRAIT_WINDOW = (0, 0, 1080, 2400)
LANDSCAPE_WINDOW = (0, 0, 2400, 1080)


@pytest.mark.parametrize("text", ["Skip Ad!", "跳过跳过跳过跳", "1234567", "skip 5 seconds"])
def test_check_text_rejects_long_text_on_transverse_axis(text):
    outcome = CheckOutcome()
    assert check_text(text, outcome) is False
    assert outcome.reason == Reason(ReasonKind.ILLEGAL_TEXT, Axis.TRANSVERSE)
    assert outcome.text == text


def test_check_text_rejects_more_than_four_non_ascii_chars():
    outcome = CheckOutcome()
    assert check_text("跳过广告吧啊", outcome) is False
    assert outcome.reason == Reason(ReasonKind.ILLEGAL_TEXT, Axis.PORTRAIT)


@pytest.mark.parametrize("text", ["跳过", "跳过广告", "跳过 5s", "Skip", "~~~~~~"])
def test_check_text_accepts_short_labels(text):
    outcome = CheckOutcome()
    assert check_text(text, outcome) is True
    assert outcome.reason is None
    assert outcome.text == text


def test_check_region_rejects_left_of_three_quarters():
    outcome = CheckOutcome()
    assert check_region((200, 1800, 400, 1900), PORTRAIT_WINDOW, outcome) is False
    assert outcome.reason == Reason(ReasonKind.ILLEGAL_LOCATION, Axis.TRANSVERSE)


def test_check_region_accepts_top_right_corner():
    outcome = CheckOutcome()
    assert check_region((825, 170, 975, 230), PORTRAIT_WINDOW, outcome) is True
    assert outcome.reason is None


def test_check_region_rejects_middle_band():
    outcome = CheckOutcome()
    assert check_region((825, 1000, 975, 1060), PORTRAIT_WINDOW, outcome) is False
    assert outcome.reason == Reason(ReasonKind.ILLEGAL_LOCATION, Axis.PORTRAIT)


def test_check_region_accepts_bottom_band_and_boundaries():
    assert check_region((825, 1970, 975, 2030), PORTRAIT_WINDOW, CheckOutcome()) is True
    # Center exactly on 3/4 width and exactly on 1/4 height both pass.
    assert check_region((760, 570, 860, 630), PORTRAIT_WINDOW, CheckOutcome()) is True
    # Center exactly on 2/3 height passes too (strictly-between rule).
    assert check_region((825, 1570, 975, 1630), PORTRAIT_WINDOW, CheckOutcome()) is True


def test_check_region_has_no_right_bound():
    assert check_region((1060, 10, 1080, 30), PORTRAIT_WINDOW, CheckOutcome()) is True


def test_check_size_portrait_uses_inclusive_thresholds():
    # 1080 // 3 == 360, 2400 // 8 == 300
    outcome = CheckOutcome()
    assert check_size((0, 0, 360, 60), PORTRAIT_WINDOW, outcome) is False
    assert outcome.reason == Reason(ReasonKind.ILLEGAL_SIZE, Axis.TRANSVERSE)

    assert check_size((0, 0, 359, 60), PORTRAIT_WINDOW, CheckOutcome()) is True

    outcome = CheckOutcome()
    assert check_size((0, 0, 340, 300), PORTRAIT_WINDOW, outcome) is False
    assert outcome.reason == Reason(ReasonKind.ILLEGAL_SIZE, Axis.PORTRAIT)


def test_check_size_landscape_uses_exclusive_thresholds():
    # 2400 // 6 == 400, 1080 // 4 == 270
    assert check_size((0, 0, 400, 270), LANDSCAPE_WINDOW, CheckOutcome()) is True

    outcome = CheckOutcome()
    assert check_size((0, 0, 401, 100), LANDSCAPE_WINDOW, outcome) is False
    assert outcome.reason == Reason(ReasonKind.ILLEGAL_SIZE, Axis.TRANSVERSE)

    outcome = CheckOutcome()
    assert check_size((0, 0, 300, 271), LANDSCAPE_WINDOW, outcome) is False
    assert outcome.reason == Reason(ReasonKind.ILLEGAL_SIZE, Axis.PORTRAIT)


def test_check_size_rejects_degenerate_rects():
    outcome = CheckOutcome()
    assert check_size((10, 10, 10, 10), PORTRAIT_WINDOW, outcome) is False
    assert outcome.reason == Reason(ReasonKind.ILLEGAL_SIZE, Axis.TRANSVERSE)

    outcome = CheckOutcome()
    assert check_size((10, 10, 60, 10), PORTRAIT_WINDOW, outcome) is False
    assert outcome.reason == Reason(ReasonKind.ILLEGAL_SIZE, Axis.PORTRAIT)


@pytest.mark.parametrize(
    "node_rect",
    [(0, 0, 150, 60), (0, 0, 60, 150), (0, 0, 5000, 5000), (0, 0, 0, 0)],
)
def test_check_size_orientation_comes_from_window_only(node_rect):
    portrait = CheckOutcome()
    check_size(node_rect, PORTRAIT_WINDOW, portrait)
    assert portrait.portrait is True

    landscape = CheckOutcome()
    check_size(node_rect, LANDSCAPE_WINDOW, landscape)
    assert landscape.portrait is False


def test_square_window_counts_as_landscape():
    assert is_portrait((0, 0, 1000, 1000)) is False
    outcome = CheckOutcome()
    check_size((0, 0, 100, 50), (0, 0, 1000, 1000), outcome)
    assert outcome.portrait is False


def test_check_size_takes_orientation_from_is_portrait(monkeypatch):
    monkeypatch.setattr(rules, "is_portrait", lambda window_rect: True)
    outcome = CheckOutcome()
    check_size((0, 0, 100, 50), LANDSCAPE_WINDOW, outcome)
    assert outcome.portrait is True
