from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class ContentDelta:
    text: str


@dataclass(slots=True, frozen=True)
class Done:
    pass


@dataclass(slots=True, frozen=True)
class StreamError:
    message: str


@dataclass(slots=True, frozen=True)
class Ignorable:
    pass


StreamEvent = ContentDelta | Done | StreamError | Ignorable

DONE = Done()
IGNORABLE = Ignorable()
