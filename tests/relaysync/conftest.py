"""Shared fixtures for relaysync tests: fake signer, relay transport and clock."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence

import pytest

from relaysync.models.event import Event, UnsignedEvent
from relaysync.models.ports import Filter, PublishOutcome

SIGNER_PUBKEY = "a" * 64


class FakeSigner:
    def __init__(self, pubkey: str = SIGNER_PUBKEY) -> None:
        self._pubkey = pubkey
        self.signed: list[Event] = []

    @property
    def pubkey(self) -> str:
        return self._pubkey

    async def sign(self, unsigned: UnsignedEvent) -> Event:
        event = Event.from_unsigned(unsigned, self._pubkey, sig="f" * 128)
        self.signed.append(event)
        return event


def _matches(event: Event, flt: Filter) -> bool:
    if "ids" in flt and event.id not in flt["ids"]:
        return False
    if "kinds" in flt and event.kind not in flt["kinds"]:
        return False
    if "authors" in flt and event.pubkey not in flt["authors"]:
        return False
    for key, wanted in flt.items():
        if key.startswith("#") and not set(event.tag_values(key[1:])) & set(wanted):
            return False
    return True


class FakeRelayTransport:
    """In-memory relay: stores what is published, answers queries from the store."""

    def __init__(self, stored: Sequence[Event] = ()) -> None:
        self.stored: list[Event] = list(stored)
        self.published: list[Event] = []
        self.reject: set[str] = set()
        self.queries: list[list[Filter]] = []

    async def publish(self, event: Event, relays: Sequence[str]) -> PublishOutcome:
        if event.id in self.reject:
            return PublishOutcome(ok=False, errors=["blocked: test"])
        self.published.append(event)
        self.stored.append(event)
        return PublishOutcome(ok=True, accepted_by=list(relays))

    async def query(self, filters: Sequence[Filter], relays: Sequence[str]) -> AsyncIterator[Event]:
        self.queries.append(list(filters))
        for event in list(self.stored):
            if any(_matches(event, f) for f in filters):
                yield event


class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(seconds, 0.0)


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def signer():
    return FakeSigner()


@pytest.fixture
def relay():
    return FakeRelayTransport()


@pytest.fixture
def clock():
    return FakeClock()
