from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

Rect = Tuple[int, int, int, int]


class ReasonKind(Enum):
    ILLEGAL_TARGET = "IllegalTarget"
    ILLEGAL_TEXT = "IllegalText"
    ILLEGAL_LOCATION = "IllegalLocation"
    ILLEGAL_SIZE = "IllegalSize"
    INVISIBLE = "Invisible"
    NOT_CLICKABLE = "NotClickable"
    PARENT_FAULT = "ParentFault"
    INTERNAL_ERROR = "InternalError"


class Axis(Enum):
    PORTRAIT = "Portrait"
    TRANSVERSE = "Transverse"


class ActivationKind(Enum):
    NONE = "none"
    DIRECT_INVOKE = "action"
    SYNTHETIC_POINTER_EVENT = "event"


@dataclass(frozen=True)
class Reason:
    kind: ReasonKind
    axis: Optional[Axis] = None

    def __str__(self) -> str:
        if self.axis is None:
            return self.kind.value
        return f"{self.kind.value}|{self.axis.value}"


def format_rect(rect: Optional[Rect]) -> str:
    if rect is None:
        return "null"
    left, top, right, bottom = rect
    return f"[{left},{top}][{right},{bottom}]"


def rect_center(rect: Rect) -> Tuple[float, float]:
    return (rect[0] + rect[2]) / 2.0, (rect[1] + rect[3]) / 2.0


@dataclass
class CheckOutcome:
    """Result of one classification attempt.

    A fresh instance is built per attempt. Rules and the classifier mutate it
    while the attempt runs; once it is rendered into the journal or handed to
    a caller it is not touched again.
    """

    source_app: Optional[str] = None
    text: Optional[str] = None
    bounds: Optional[Rect] = None
    parent_bounds: Optional[Rect] = None
    portrait: Optional[bool] = None
    accepted: bool = False
    reason: Optional[Reason] = None
    activation: ActivationKind = ActivationKind.NONE

    def mark(self, kind: ReasonKind, axis: Optional[Axis] = None) -> None:
        self.reason = Reason(kind, axis)

    def mark_error(self) -> None:
        # Keeps whatever axis was in effect so the dump still shows the failing stage.
        axis = self.reason.axis if self.reason is not None else None
        self.reason = Reason(ReasonKind.INTERNAL_ERROR, axis)

    @property
    def reason_kind(self) -> Optional[ReasonKind]:
        return self.reason.kind if self.reason is not None else None

    def render(self) -> str:
        return (
            f"Result(pkg={self.source_app}, text={self.text}, "
            f"bounds={format_rect(self.bounds)}, parentBounds={format_rect(self.parent_bounds)}, "
            f"portrait={self.portrait}, passed={self.accepted}, "
            f"reason={self.reason if self.reason is not None else 'none'}, "
            f"injection={self.activation.value})"
        )

    def __str__(self) -> str:
        return self.render()


__all__ = [
    "Rect",
    "ReasonKind",
    "Axis",
    "ActivationKind",
    "Reason",
    "CheckOutcome",
    "format_rect",
    "rect_center",
]
