"""
quiver.events - Engine event stream.

While an operation runs, the engine appends one JSON record per line to
a dedicated event log (`--event-log <path>`):

    {"sequence": 0, "timestamp": 1700000000, "preludeEvent": {"config": {}}}
    {"sequence": 3, "timestamp": 1700000002, "summaryEvent": {"resourceChanges": {"same": 1}}}

Each record carries exactly one variant. EventStream tails the log and
yields EngineEvent objects in emission order until the engine exits and
the log is drained. A corrupt line is skipped; it never ends the stream.
"""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator

from loguru import logger

from quiver.errors import EventHandlerError, ParseError


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# EVENT TYPES
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
@dataclass
class CancelEvent:
    pass


@dataclass
class StdoutEngineEvent:
    message: str
    color: str = ""


@dataclass
class DiagnosticEvent:
    message: str
    severity: str
    color: str = ""
    urn: str | None = None
    prefix: str | None = None
    stream_id: int | None = None
    ephemeral: bool = False


@dataclass
class PolicyEvent:
    message: str
    policy_name: str
    policy_pack_name: str
    policy_pack_version: str
    enforcement_level: str
    color: str = ""
    resource_urn: str | None = None


@dataclass
class PreludeEvent:
    config: dict[str, str] = field(default_factory=dict)


@dataclass
class SummaryEvent:
    maybe_corrupt: bool = False
    duration_seconds: int = 0
    resource_changes: dict[str, int] = field(default_factory=dict)
    policy_packs: dict[str, str] = field(default_factory=dict)


@dataclass
class StepEventMetadata:
    op: str
    urn: str
    type: str
    old: dict[str, Any] | None = None
    new: dict[str, Any] | None = None
    keys: list[str] = field(default_factory=list)
    diffs: list[str] = field(default_factory=list)
    logical: bool = False
    provider: str = ""


@dataclass
class ResourcePreEvent:
    metadata: StepEventMetadata
    planning: bool = False


@dataclass
class ResOutputsEvent:
    metadata: StepEventMetadata
    planning: bool = False


@dataclass
class ResOpFailedEvent:
    metadata: StepEventMetadata
    status: int = 0
    steps: int = 0


def _metadata(data: dict[str, Any]) -> StepEventMetadata:
    return StepEventMetadata(
        op=data.get("op", ""),
        urn=data.get("urn", ""),
        type=data.get("type", ""),
        old=data.get("old"),
        new=data.get("new"),
        keys=list(data.get("keys") or []),
        diffs=list(data.get("diffs") or []),
        logical=bool(data.get("logical", False)),
        provider=data.get("provider", ""),
    )


_VARIANTS: dict[str, tuple[str, Callable[[dict[str, Any]], Any]]] = {
    "cancelEvent": ("cancel_event", lambda d: CancelEvent()),
    "stdoutEvent": ("stdout_event", lambda d: StdoutEngineEvent(
        message=d.get("message", ""), color=d.get("color", ""),
    )),
    "diagnosticEvent": ("diagnostic_event", lambda d: DiagnosticEvent(
        message=d.get("message", ""),
        severity=d.get("severity", "info"),
        color=d.get("color", ""),
        urn=d.get("urn"),
        prefix=d.get("prefix"),
        stream_id=d.get("streamId"),
        ephemeral=bool(d.get("ephemeral", False)),
    )),
    "policyEvent": ("policy_event", lambda d: PolicyEvent(
        message=d.get("message", ""),
        policy_name=d.get("policyName", ""),
        policy_pack_name=d.get("policyPackName", ""),
        policy_pack_version=d.get("policyPackVersion", ""),
        enforcement_level=d.get("enforcementLevel", ""),
        color=d.get("color", ""),
        resource_urn=d.get("resourceUrn"),
    )),
    "preludeEvent": ("prelude_event", lambda d: PreludeEvent(
        config=dict(d.get("config") or {}),
    )),
    "summaryEvent": ("summary_event", lambda d: SummaryEvent(
        maybe_corrupt=bool(d.get("maybeCorrupt", False)),
        duration_seconds=int(d.get("durationSeconds", 0)),
        resource_changes=dict(d.get("resourceChanges") or {}),
        policy_packs=dict(d.get("PolicyPacks") or d.get("policyPacks") or {}),
    )),
    "resourcePreEvent": ("resource_pre_event", lambda d: ResourcePreEvent(
        metadata=_metadata(d.get("metadata") or {}),
        planning=bool(d.get("planning", False)),
    )),
    "resOutputsEvent": ("res_outputs_event", lambda d: ResOutputsEvent(
        metadata=_metadata(d.get("metadata") or {}),
        planning=bool(d.get("planning", False)),
    )),
    "resOpFailedEvent": ("res_op_failed_event", lambda d: ResOpFailedEvent(
        metadata=_metadata(d.get("metadata") or {}),
        status=int(d.get("status", 0)),
        steps=int(d.get("steps", 0)),
    )),
}


@dataclass
class EngineEvent:
    """One record from the engine's event log.

    Exactly one of the variant attributes is set.
    """
    sequence: int = 0
    timestamp: int = 0
    cancel_event: CancelEvent | None = None
    stdout_event: StdoutEngineEvent | None = None
    diagnostic_event: DiagnosticEvent | None = None
    prelude_event: PreludeEvent | None = None
    summary_event: SummaryEvent | None = None
    resource_pre_event: ResourcePreEvent | None = None
    res_outputs_event: ResOutputsEvent | None = None
    res_op_failed_event: ResOpFailedEvent | None = None
    policy_event: PolicyEvent | None = None

    @property
    def kind(self) -> str:
        for attr, _ in _VARIANTS.values():
            if getattr(self, attr) is not None:
                return attr
        return ""


def decode_event(line: str) -> EngineEvent:
    """Decode one event log line.

    Raises:
        ParseError: not JSON, not an object, or not exactly one variant
    """
    try:
        data = json.loads(line)
    except ValueError as e:
        raise ParseError(f"invalid event record: {e}") from e
    if not isinstance(data, dict):
        raise ParseError("event record must be a JSON object")

    present = [key for key in _VARIANTS if data.get(key) is not None]
    if len(present) != 1:
        raise ParseError(f"event record must carry exactly one variant, found {present}")

    key = present[0]
    payload = data[key]
    if not isinstance(payload, dict):
        raise ParseError(f"event variant '{key}' must be an object")

    attr, build = _VARIANTS[key]
    try:
        variant = build(payload)
        event = EngineEvent(
            sequence=int(data.get("sequence", 0)),
            timestamp=int(data.get("timestamp", 0)),
        )
    except (TypeError, ValueError) as e:
        raise ParseError(f"invalid '{key}' record: {e}") from e
    setattr(event, attr, variant)
    return event


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# STREAM
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
EventHandler = Callable[[EngineEvent], None]


class EventStream:
    """Lazy, single-use iterator over an engine event log.

    The stream ends once `done` is set (the engine exited) and every
    complete line has been read.
    """

    def __init__(self, path: str | Path, done: threading.Event, poll_interval: float = 0.02):
        self.path = Path(path)
        self.done = done
        self.poll_interval = poll_interval
        self.skipped = 0
        self._consumed = False

    def __iter__(self) -> Iterator[EngineEvent]:
        if self._consumed:
            raise RuntimeError("event stream can only be iterated once")
        self._consumed = True
        return self._events()

    def _events(self) -> Iterator[EngineEvent]:
        while not self.path.exists():
            if self.done.is_set():
                # Engine may have created the log just before exiting
                if not self.path.exists():
                    return
                break
            time.sleep(self.poll_interval)

        with open(self.path, "rb") as f:
            pending = b""
            while True:
                chunk = f.readline()
                if chunk:
                    pending += chunk
                    if not pending.endswith(b"\n"):
                        continue
                    line, pending = pending, b""
                    event = self._decode(line)
                    if event is not None:
                        yield event
                    continue
                if self.done.is_set():
                    # Drain whatever was written between the last read and exit
                    rest = pending + f.read()
                    for line in rest.splitlines():
                        event = self._decode(line)
                        if event is not None:
                            yield event
                    return
                time.sleep(self.poll_interval)

    def _decode(self, raw: bytes) -> EngineEvent | None:
        if not raw.strip():
            return None
        try:
            return decode_event(raw.decode("utf-8"))
        except (UnicodeDecodeError, ParseError) as e:
            self.skipped += 1
            logger.debug("skipping event record: {}", e)
            return None

    def dispatch(self, handler: EventHandler | None = None) -> EventCollector:
        """Hand every event to handler, in order, on a background thread."""
        return EventCollector(self, handler).start()


class EventCollector:
    """Consumes an EventStream on a background thread.

    The caller's handler runs on that thread, one event at a time in
    emission order. If it raises, later events are still drained and
    recorded but no longer handed to it; the error is re-raised from
    `raise_for_handler()`.
    """

    def __init__(self, stream: EventStream, handler: EventHandler | None = None):
        self.stream = stream
        self.handler = handler
        self.events: list[EngineEvent] = []
        self.handler_error: BaseException | None = None
        self.failed_event: EngineEvent | None = None
        self._thread = threading.Thread(target=self._consume, name="quiver-events", daemon=True)

    def start(self) -> EventCollector:
        self._thread.start()
        return self

    def join(self) -> None:
        self._thread.join()

    def _consume(self) -> None:
        for event in self.stream:
            self.events.append(event)
            if self.handler is None or self.handler_error is not None:
                continue
            try:
                self.handler(event)
            except Exception as e:
                self.handler_error = e
                self.failed_event = event

    @property
    def summary(self) -> SummaryEvent | None:
        for event in reversed(self.events):
            if event.summary_event is not None:
                return event.summary_event
        return None

    def raise_for_handler(self) -> None:
        if self.handler_error is not None:
            raise EventHandlerError(
                f"event handler raised: {self.handler_error!r}",
                event=self.failed_event,
            ) from self.handler_error
