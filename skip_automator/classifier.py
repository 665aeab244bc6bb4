from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from .errors import ClassificationError
from .outcome import ActivationKind, Axis, CheckOutcome, ReasonKind, rect_center
from .rules import check_region, check_size, check_text

if TYPE_CHECKING:
    from .adb_provider import AdbActivationSink, UiTreeNode

_logger = logging.getLogger("SkipAutomator").getChild("Classifier")


def classify(
    node: "UiTreeNode",
    outcome: CheckOutcome,
    activate: bool,
    sink: Optional["AdbActivationSink"] = None,
) -> CheckOutcome:
    if not node.visible_to_user:
        outcome.mark(ReasonKind.INVISIBLE)
        return outcome
    if not check_text(node.text, outcome):
        return outcome
    node_rect = node.bounds_in_screen()
    outcome.bounds = node_rect
    window_rect = node.window_bounds()
    if not check_region(node_rect, window_rect, outcome):
        return outcome
    if not check_size(node_rect, window_rect, outcome):
        return outcome

    # Geometry and text are strict enough on their own; clickability only
    # decides how the target gets activated.
    outcome.accepted = True
    if node.clickable:
        outcome.activation = ActivationKind.DIRECT_INVOKE
        if activate and sink is not None:
            sink.invoke(node)
        return outcome

    outcome.mark(ReasonKind.NOT_CLICKABLE)
    parent = node.parent
    if parent is not None:
        parent_rect = parent.bounds_in_screen()
        outcome.parent_bounds = parent_rect
        if parent.clickable and check_size(parent_rect, window_rect, outcome):
            outcome.bounds = parent_rect
            outcome.activation = ActivationKind.DIRECT_INVOKE
            if activate and sink is not None:
                sink.invoke(parent)
            return outcome

    outcome.mark(ReasonKind.PARENT_FAULT)
    outcome.activation = ActivationKind.SYNTHETIC_POINTER_EVENT
    if activate and sink is not None:
        x, y = rect_center(node_rect)
        sink.tap(x, y)
    return outcome


def select(
    root: "UiTreeNode",
    label: str,
    outcome: CheckOutcome,
    activate: bool,
    sink: Optional["AdbActivationSink"] = None,
) -> CheckOutcome:
    outcome.source_app = root.package
    matches = root.find_by_text(label)
    if not matches:
        outcome.mark(ReasonKind.ILLEGAL_TARGET, Axis.PORTRAIT)
        return outcome
    if len(matches) > 1:
        _logger.debug("Ambiguous target: %d nodes labelled %r in %s", len(matches), label, outcome.source_app)
        outcome.mark(ReasonKind.ILLEGAL_TARGET, Axis.TRANSVERSE)
        return outcome
    try:
        return classify(matches[0], outcome, activate, sink)
    except ClassificationError:
        raise
    except Exception as exc:
        raise ClassificationError(f"{exc.__class__.__name__}: {exc}") from exc


__all__ = ["classify", "select"]
