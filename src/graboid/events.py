"""
Structured progress events.

The pipeline reports progress as ProgressEvent values and leaves all
presentation to the caller, so the core never formats text.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Literal, Optional

__all__ = ["Stage", "Outcome", "ProgressEvent", "ProgressSink", "emit"]

Stage = Literal["authenticate", "manifest", "blobs", "config", "layer", "assemble", "tags"]
Outcome = Literal["started", "completed", "skipped", "failed"]


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """
    One step of a pull.

    stage: pipeline stage the event belongs to
    item: identifier of the thing being worked on (digest, reference, path)
    outcome: what happened
    detail: True for fine-grained events (per blob) shown only when verbose
    size: byte count, when meaningful
    """
    stage: Stage
    item: str
    outcome: Outcome
    detail: bool = False
    size: Optional[int] = None


ProgressSink = Callable[[ProgressEvent], None]


def emit(sink: Optional[ProgressSink], stage: Stage, item: str, outcome: Outcome, *,
         detail: bool = False, size: Optional[int] = None) -> None:
    """Send an event to sink if one is attached."""
    if sink is not None:
        sink(ProgressEvent(stage=stage, item=item, outcome=outcome, detail=detail, size=size))
