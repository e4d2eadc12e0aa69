"""Tests for settings, log context and the event record."""

from __future__ import annotations

import pydantic
import pytest
import structlog

from relaysync.core.config import SyncSettings
from relaysync.core.logging import import_log_context
from relaysync.models.event import (
    Event,
    EventKind,
    UnsignedEvent,
    compute_event_id,
    normalize_tags,
    repo_address,
    split_address,
)

PUBKEY = "a" * 64


class TestSyncSettings:
    def test_defaults(self):
        settings = SyncSettings()
        assert settings.relay_batch_size == 30
        assert settings.relay_batch_delay == 0.25
        assert settings.max_retries == 3
        assert settings.page_size == 100

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("RELAYSYNC_RELAY_BATCH_SIZE", "50")
        monkeypatch.setenv("RELAYSYNC_SECONDARY_RATE_WAIT", "5.5")
        settings = SyncSettings.from_env()
        assert settings.relay_batch_size == 50
        assert settings.secondary_rate_wait == 5.5

    def test_overrides_win(self, monkeypatch):
        monkeypatch.setenv("RELAYSYNC_MAX_RETRIES", "7")
        assert SyncSettings.from_env(max_retries=2).max_retries == 2

    def test_invalid_values_rejected(self, monkeypatch):
        monkeypatch.setenv("RELAYSYNC_PAGE_SIZE", "500")
        with pytest.raises(pydantic.ValidationError):
            SyncSettings.from_env()

    def test_frozen(self):
        with pytest.raises(pydantic.ValidationError):
            SyncSettings().max_retries = 9


class TestImportLogContext:
    def test_binds_only_inside_the_block(self):
        with import_log_context("https://github.com/octo/hello", provider="github"):
            bound = structlog.contextvars.get_contextvars()
            assert bound["import_url"] == "https://github.com/octo/hello"
            assert bound["provider"] == "github"
        assert "import_url" not in structlog.contextvars.get_contextvars()


class TestEvent:
    def _unsigned(self, content="hello"):
        return UnsignedEvent(
            kind=EventKind.ISSUE, created_at=1_700_000_000, tags=[["subject", "x"]], content=content
        )

    def test_id_is_deterministic_sha256(self):
        first = Event.from_unsigned(self._unsigned(), PUBKEY)
        second = Event.from_unsigned(self._unsigned(), PUBKEY)
        assert first.id == second.id
        assert len(first.id) == 64
        int(first.id, 16)
        assert first.id == compute_event_id(
            PUBKEY, 1_700_000_000, 1621, (("subject", "x"),), "hello"
        )

    def test_id_covers_content(self):
        assert (
            Event.from_unsigned(self._unsigned("a"), PUBKEY).id
            != Event.from_unsigned(self._unsigned("b"), PUBKEY).id
        )

    def test_signature_not_part_of_equality(self):
        a = Event.from_unsigned(self._unsigned(), PUBKEY, sig="1" * 128)
        b = Event.from_unsigned(self._unsigned(), PUBKEY, sig="2" * 128)
        assert a == b

    def test_dict_round_trip(self):
        event = Event.from_unsigned(self._unsigned(), PUBKEY, sig="f" * 128)
        data = event.to_dict()
        assert data["tags"] == [["subject", "x"]]
        assert Event.from_dict(data) == event

    def test_tags_normalized(self):
        assert normalize_tags([["e", 1], [], ("p", "x")]) == (("e", "1"), ("p", "x"))

    def test_address_only_for_addressable_kinds(self):
        announcement = Event.from_unsigned(
            UnsignedEvent(kind=EventKind.REPO_ANNOUNCEMENT, created_at=1, tags=[("d", "hello")]),
            PUBKEY,
        )
        assert announcement.address == repo_address(PUBKEY, "hello") == f"30617:{PUBKEY}:hello"
        assert Event.from_unsigned(self._unsigned(), PUBKEY).address is None

    def test_split_address(self):
        assert split_address(f"30617:{PUBKEY}:my:repo") == (30617, PUBKEY, "my:repo")
        assert split_address("nope") is None
        assert split_address(f"x:{PUBKEY}:y") is None
