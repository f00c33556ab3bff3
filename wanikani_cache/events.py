"""Messages emitted by the batch detail synchronizer.

Each event is self-contained; consumers never need an earlier event to
interpret a later one. ``rate_limit`` and ``complete`` are terminal and at
most one of them is ever emitted per run.
"""
import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass
class StartEvent:
    total: int
    cached: int
    type: str = field(default="start", init=False)


@dataclass
class ProgressEvent:
    current: int
    total: int
    id: int
    characters: Optional[str]
    parts_of_speech: List[str]
    type: str = field(default="progress", init=False)


@dataclass
class ErrorEvent:
    message: str
    id: Optional[int] = None  # None for failures not tied to one subject
    type: str = field(default="error", init=False)


@dataclass
class RateLimitEvent:
    fetched: int
    remaining: int
    message: str = "Rate limited by WaniKani API. Please wait a minute and try again."
    retry_after: Optional[float] = None
    type: str = field(default="rate_limit", init=False)


@dataclass
class CompleteEvent:
    fetched: int
    failed: int
    cached: int
    total: int
    type: str = field(default="complete", init=False)


SyncEvent = Union[StartEvent, ProgressEvent, ErrorEvent, RateLimitEvent, CompleteEvent]

TERMINAL_TYPES = frozenset({"rate_limit", "complete"})


def is_terminal(event: SyncEvent) -> bool:
    return event.type in TERMINAL_TYPES


def to_dict(event: SyncEvent) -> Dict[str, Any]:
    data = asdict(event)
    if isinstance(event, ErrorEvent) and event.id is None:
        del data["id"]
    return data


def to_sse(event: SyncEvent) -> str:
    """Frame an event as one server-sent-events message."""
    return f"data: {json.dumps(to_dict(event), ensure_ascii=False)}\n\n"
