"""Capability protocols for the automation surface driven by the engines.

Engines only see these protocols; concrete element lookup lives in the backend
(``subporter.engine.browser``) or in scripted fakes used by the tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


class Probe(str, Enum):
    """Named interactive targets the engines can ask about."""

    SUBSCRIBE = "subscribe"
    ACCOUNT = "account"


class SurfaceState(str, Enum):
    """Observed state of a probed target.

    ``ACTIVE`` means the target reports the action as already done (subscribed,
    signed in); ``READY`` means it is present and actionable.
    """

    ABSENT = "absent"
    READY = "ready"
    ACTIVE = "active"


@dataclass(slots=True)
class ActionResult:
    performed: bool
    detail: str | None = None


@dataclass(slots=True)
class ListingMeasurement:
    """Visible item count and total scrollable extent of a listing page."""

    item_count: int
    extent: int


@dataclass(slots=True)
class ListingUnit:
    """Raw fields lifted from one listing entry, before validation."""

    href: str | None = None
    name: str | None = None
    handle: str | None = None
    thumbnail: str | None = None
    count_text: str | None = None


@runtime_checkable
class ActionSurface(Protocol):
    """Navigate-probe-act capability used by the import job."""

    def ensure_ready(self) -> None:
        """Make sure a live target exists; raise ``SurfaceUnavailableError`` otherwise."""

    def navigate(self, target: str) -> None:
        ...

    def detect_state(self, probe: Probe) -> SurfaceState:
        ...

    def act(self, probe: Probe) -> ActionResult:
        ...

    def close(self) -> None:
        ...


@runtime_checkable
class ListingSurface(ActionSurface, Protocol):
    """Paging primitives used by the extraction engine."""

    @property
    def origin(self) -> str:
        ...

    def scroll_to_end(self) -> None:
        ...

    def measure(self) -> ListingMeasurement:
        ...

    def units(self) -> list[ListingUnit]:
        ...


__all__ = [
    "ActionResult",
    "ActionSurface",
    "ListingMeasurement",
    "ListingSurface",
    "ListingUnit",
    "Probe",
    "SurfaceState",
]
