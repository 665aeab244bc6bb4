from __future__ import annotations

import io
import json
import logging
import os
import threading
import traceback
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, List, Optional

from .config import COUNT_FILE, JOURNAL_FILE, MAX_RECORD_COUNT, RECORDS_FILE
from .errors import PersistenceIOError, PersistenceParseError, SkipAutomatorError
from .outcome import CheckOutcome, Rect

ERROR_BANNER = "========Error Occurred========"


def format_current_time() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


class EntryKind(Enum):
    LOG = "log"
    DECISION = "decision"


@dataclass(frozen=True)
class JournalEntry:
    timestamp: str
    text: str
    kind: EntryKind = EntryKind.LOG

    def to_json(self) -> str:
        return json.dumps(
            {"timestamp": self.timestamp, "kind": self.kind.value, "text": self.text},
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, line: str) -> "JournalEntry":
        raw = json.loads(line)
        if not isinstance(raw, dict):
            raise ValueError("entry is not an object")
        timestamp = raw.get("timestamp")
        text = raw.get("text")
        if not isinstance(timestamp, str) or not isinstance(text, str):
            raise ValueError("entry is missing timestamp or text")
        return cls(timestamp=timestamp, text=text, kind=EntryKind(raw.get("kind", EntryKind.LOG.value)))

    def __str__(self) -> str:
        return f"[{self.timestamp}] {self.text}"


def _parse_rect(value: object) -> Optional[Rect]:
    if value is None:
        return None
    if not isinstance(value, list) or len(value) != 4:
        raise ValueError(f"bad bounds {value!r}")
    if not all(isinstance(x, int) and not isinstance(x, bool) for x in value):
        raise ValueError(f"bad bounds {value!r}")
    return (value[0], value[1], value[2], value[3])


@dataclass(frozen=True)
class AcceptanceRecord:
    """One counted acceptance, kept outside the bounded entry window."""

    timestamp: str
    source_app: str
    text: str
    bounds: Optional[Rect]
    injection: str

    @classmethod
    def from_outcome(cls, outcome: CheckOutcome, timestamp: Optional[str] = None) -> "AcceptanceRecord":
        return cls(
            timestamp=timestamp or format_current_time(),
            source_app=outcome.source_app or "",
            text=outcome.text or "",
            bounds=outcome.bounds,
            injection=outcome.activation.value,
        )

    def to_json(self) -> str:
        return json.dumps(
            {
                "timestamp": self.timestamp,
                "pkg": self.source_app,
                "text": self.text,
                "bounds": list(self.bounds) if self.bounds is not None else None,
                "injection": self.injection,
            },
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, line: str) -> "AcceptanceRecord":
        raw = json.loads(line)
        if not isinstance(raw, dict):
            raise ValueError("record is not an object")
        fields = [raw.get(key) for key in ("timestamp", "pkg", "text", "injection")]
        if not all(isinstance(x, str) for x in fields):
            raise ValueError("record is missing a string field")
        timestamp, source_app, text, injection = fields
        return cls(
            timestamp=timestamp,
            source_app=source_app,
            text=text,
            bounds=_parse_rect(raw.get("bounds")),
            injection=injection,
        )

    def __str__(self) -> str:
        bounds = "null" if self.bounds is None else "[{},{}][{},{}]".format(*self.bounds)
        return f"{self.timestamp} {self.source_app} text={self.text} bounds={bounds} injection={self.injection}"


class Channel:
    """A random-access byte file that is read whole and rewritten whole."""

    def __init__(self, stream: BinaryIO, name: str) -> None:
        self._stream = stream
        self.name = name

    @classmethod
    def open(cls, path: str, name: Optional[str] = None) -> "Channel":
        try:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            Path(path).touch(exist_ok=True)
            stream = open(path, "r+b")
        except OSError as exc:
            raise PersistenceIOError(f"cannot open {path}: {exc}") from exc
        return cls(stream, name or os.path.basename(path))

    def read_text(self) -> str:
        try:
            self._stream.seek(0)
            data = self._stream.read()
        except OSError as exc:
            raise PersistenceIOError(f"cannot read {self.name}: {exc}") from exc
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PersistenceParseError(self.name, 0, f"not UTF-8 ({exc.reason})") from exc

    def rewrite(self, text: str) -> None:
        # Truncate before writing so the file never grows across restarts.
        try:
            self._stream.seek(0)
            self._stream.truncate(0)
            self._stream.write(text.encode("utf-8"))
            self._stream.flush()
            try:
                os.fsync(self._stream.fileno())
            except io.UnsupportedOperation:
                pass
        except OSError as exc:
            raise PersistenceIOError(f"cannot write {self.name}: {exc}") from exc

    def close(self) -> None:
        try:
            self._stream.close()
        except OSError:
            pass


@dataclass
class PersistenceChannels:
    count: Channel
    log: Channel
    records: Channel

    @classmethod
    def open(
        cls,
        count_path: str = COUNT_FILE,
        log_path: str = JOURNAL_FILE,
        records_path: str = RECORDS_FILE,
    ) -> "PersistenceChannels":
        return cls(
            count=Channel.open(count_path, "count"),
            log=Channel.open(log_path, "journal"),
            records=Channel.open(records_path, "records"),
        )

    def close(self) -> None:
        for channel in (self.count, self.log, self.records):
            channel.close()


class RecordJournal:
    """Bounded, insertion-ordered window of log and decision entries.

    Counted acceptances live in a separate record list so that evicting a
    decision summary from the window never changes ``accepted_count``. Once a
    decision has been appended in the current run, overflow evicts at the
    first decision index instead of the head, which keeps the start-up lines
    that precede it. Entries loaded from a previous run are always evicted
    first, and an append never evicts the entry it just added.

    Every method takes the journal lock, so session control on the caller's
    thread and the monitor worker can share one journal.
    """

    def __init__(
        self,
        logger: logging.Logger,
        capacity: int = MAX_RECORD_COUNT,
        channels: Optional[PersistenceChannels] = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.logger = logger.getChild("RecordJournal")
        self.capacity = capacity
        self.channels = channels
        self.accepted_count = 0
        self._lock = threading.RLock()
        self._entries: List[JournalEntry] = []
        self._records: List[AcceptanceRecord] = []
        self._first_decision_index = -1
        self._loaded_entry_count = 0
        # Set when the records channel could not be read; it is then left untouched on flush.
        self._records_unreadable = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def first_decision_index(self) -> int:
        return self._first_decision_index

    @property
    def records_unreadable(self) -> bool:
        return self._records_unreadable

    def attach(self, channels: PersistenceChannels) -> None:
        with self._lock:
            self.channels = channels

    def entries(self) -> List[JournalEntry]:
        with self._lock:
            return list(self._entries)

    def records(self) -> List[AcceptanceRecord]:
        with self._lock:
            return list(self._records)

    def append(self, entry: JournalEntry) -> None:
        with self._lock:
            self._entries.append(entry)
            if len(self._entries) > self.capacity:
                self._evict_one()

    def _evict_one(self) -> None:
        newest = len(self._entries) - 1
        marker = self._first_decision_index
        if self._loaded_entry_count > 0 or marker < 0 or marker >= newest:
            del self._entries[0]
            if self._loaded_entry_count > 0:
                self._loaded_entry_count -= 1
            if marker > 0:
                self._first_decision_index = marker - 1
        else:
            del self._entries[marker]

    def log(self, message: object, level: int = logging.INFO) -> JournalEntry:
        text = "null" if message is None else str(message)
        self.logger.log(level, text)
        entry = JournalEntry(format_current_time(), text, EntryKind.LOG)
        self.append(entry)
        return entry

    def append_decision(self, text: str) -> JournalEntry:
        self.logger.info(text)
        entry = JournalEntry(format_current_time(), text, EntryKind.DECISION)
        with self._lock:
            if self._first_decision_index == -1:
                self._first_decision_index = len(self._entries)
            self.append(entry)
        return entry

    def dump_error(self, exc: BaseException) -> str:
        text = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip()
        with self._lock:
            self.log(ERROR_BANNER, level=logging.ERROR)
            self.log(text, level=logging.ERROR)
        return text

    def put_record(self, outcome: CheckOutcome) -> AcceptanceRecord:
        record = AcceptanceRecord.from_outcome(outcome)
        with self._lock:
            self._records.append(record)
            self.accepted_count += 1
        return record

    def load_and_reconcile(self, count_hint: Optional[int] = None) -> int:
        """Load persisted state and return the reconciled accepted count.

        ``count_hint`` defaults to the value in the count channel. The records
        and journal channels are loaded independently. When the records load,
        their number is authoritative and a disagreement with the hint is
        logged and resolved in favour of the records. When they do not, the
        count stays at the hint and the records channel is left as it is on
        disk. The first failure is raised after everything readable has been
        applied.
        """
        with self._lock:
            channels = self._require_channels()
            if count_hint is None:
                count_hint = self.read_count_hint()
            self.accepted_count = count_hint
            failures: List[SkipAutomatorError] = []

            try:
                records = self._parse_lines(channels.records, AcceptanceRecord.from_json)
            except (PersistenceParseError, PersistenceIOError) as exc:
                self._records_unreadable = True
                failures.append(exc)
            else:
                self._records_unreadable = False
                self._records = records + self._records

            try:
                entries = self._parse_lines(channels.log, JournalEntry.from_json)
            except (PersistenceParseError, PersistenceIOError) as exc:
                failures.append(exc)
            else:
                room = max(self.capacity - len(self._entries), 0)
                kept = entries[len(entries) - room:] if room else []
                self._entries[:0] = kept
                self._loaded_entry_count += len(kept)
                if self._first_decision_index >= 0:
                    self._first_decision_index += len(kept)

            if not self._records_unreadable:
                reconciled = len(self._records)
                if reconciled != count_hint:
                    self.accepted_count = reconciled
                    self.log(
                        f"Accepted count inconsistency detected! Reassign the accepted count to {reconciled}",
                        level=logging.WARNING,
                    )

            for extra in failures[1:]:
                self.log(str(extra), level=logging.WARNING)
            if failures:
                raise failures[0]
            return self.accepted_count

    def read_count_hint(self) -> int:
        """Read the separately persisted counter; unreadable or invalid content counts as 0."""
        channel = self._require_channels().count
        try:
            text = channel.read_text().strip()
        except (PersistenceParseError, PersistenceIOError) as exc:
            self.log(str(exc), level=logging.WARNING)
            return 0
        if not text:
            return 0
        first = text.splitlines()[0].strip()
        try:
            value = int(first)
        except ValueError:
            self.log(str(PersistenceParseError(channel.name, 1, f"not an integer: {first!r}")), level=logging.WARNING)
            return 0
        if value < 0:
            self.log(str(PersistenceParseError(channel.name, 1, f"negative count: {value}")), level=logging.WARNING)
            return 0
        return value

    def flush(self) -> None:
        """Rewrite every channel from memory, truncating prior content first."""
        with self._lock:
            channels = self._require_channels()
            failures: List[str] = []
            writers = [("count", lambda: channels.count.rewrite(f"{self.accepted_count}\n"))]
            if self._records_unreadable:
                self.logger.warning("Records channel was unreadable at load; leaving it untouched")
            elif self._records:
                writers.append(("records", lambda: channels.records.rewrite(self._render_lines(self._records))))
            if self._entries:
                writers.append(("journal", lambda: channels.log.rewrite(self._render_lines(self._entries))))
            for name, write in writers:
                try:
                    write()
                except PersistenceIOError as exc:
                    self.logger.error("Persisting %s failed: %s", name, exc)
                    failures.append(str(exc))
            if failures:
                raise PersistenceIOError("; ".join(failures))

    def flush_log(self) -> None:
        with self._lock:
            channels = self._require_channels()
            if self._entries:
                channels.log.rewrite(self._render_lines(self._entries))

    def _require_channels(self) -> PersistenceChannels:
        if self.channels is None:
            raise PersistenceIOError("no persistence channels attached")
        return self.channels

    @staticmethod
    def _parse_lines(channel: Channel, parse: Callable[[str], object]) -> list:
        out = []
        for line_no, line in enumerate(channel.read_text().splitlines(), start=1):
            if not line.strip():
                continue
            try:
                out.append(parse(line))
            except (ValueError, KeyError, TypeError) as exc:
                raise PersistenceParseError(channel.name, line_no, str(exc)) from exc
        return out

    @staticmethod
    def _render_lines(items: list) -> str:
        return "".join(f"{item.to_json()}\n" for item in items)


__all__ = [
    "ERROR_BANNER",
    "format_current_time",
    "EntryKind",
    "JournalEntry",
    "AcceptanceRecord",
    "Channel",
    "PersistenceChannels",
    "RecordJournal",
]
