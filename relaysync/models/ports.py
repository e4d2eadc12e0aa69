"""Interfaces of the external collaborators: signer and relay transport."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from relaysync.models.event import Event, UnsignedEvent

Filter = dict[str, Any]


@dataclass
class PublishOutcome:
    """Result of publishing one event to a set of relays."""

    ok: bool
    accepted_by: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@runtime_checkable
class Signer(Protocol):
    """Active signing identity.

    ``sign`` raises :class:`~relaysync.core.errors.NoSignerAvailable` when no
    identity is loaded.
    """

    @property
    def pubkey(self) -> str: ...

    async def sign(self, unsigned: UnsignedEvent) -> Event: ...


@runtime_checkable
class RelayTransport(Protocol):
    """Publish/query primitives over relay nodes."""

    async def publish(self, event: Event, relays: Sequence[str]) -> PublishOutcome: ...

    def query(self, filters: Sequence[Filter], relays: Sequence[str]) -> AsyncIterator[Event]: ...
