from __future__ import annotations


class SkipAutomatorError(Exception):
    """Base class for every error raised by skip_automator."""


class ConfigurationError(SkipAutomatorError):
    """Session-control misuse, e.g. starting a monitor that is already running."""


class ProviderUnavailable(SkipAutomatorError):
    """The UI-tree provider, a device or a node could not be reached."""


class ClassificationError(SkipAutomatorError):
    """An exception escaped rule evaluation for a single candidate."""


class PersistenceParseError(SkipAutomatorError):
    """Persisted journal, record or counter data is malformed."""

    def __init__(self, channel: str, line_no: int, detail: str) -> None:
        self.channel = channel
        self.line_no = line_no
        self.detail = detail
        super().__init__(f"Failed to parse {channel} at line {line_no}: {detail}")


class PersistenceIOError(SkipAutomatorError):
    """Reading or rewriting a persistence channel failed."""


__all__ = [
    "SkipAutomatorError",
    "ConfigurationError",
    "ProviderUnavailable",
    "ClassificationError",
    "PersistenceParseError",
    "PersistenceIOError",
]
