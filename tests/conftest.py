"""Shared test fixtures for partysync."""

from __future__ import annotations

import pytest

from partysync.networking.codec import MessageCodec
from partysync.networking.loopback import LoopbackNetwork
from partysync.scheduler import Scheduler
from partysync.session.identity import IdentityStore
from tests.harness import ManualClock, Room


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def scheduler(clock: ManualClock) -> Scheduler:
    """A scheduler driven by the manual clock."""
    return Scheduler(clock)


@pytest.fixture
def network() -> LoopbackNetwork:
    return LoopbackNetwork()


@pytest.fixture
def codec() -> MessageCodec:
    return MessageCodec()


@pytest.fixture
def store() -> IdentityStore:
    """An in-memory identity store with a fresh persistent id."""
    return IdentityStore()


@pytest.fixture
def room() -> Room:
    """A hosted room with three enemies and no joiners yet."""
    return Room()
