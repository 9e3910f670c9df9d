"""Shared fixtures: in-memory channels and a brick driver wired to them."""

from __future__ import annotations

import pytest

from ev3_brick_mcp.brick import Brick
from ev3_brick_mcp.protocol.engine import RequestReplyEngine
from fakes import FakeBrick, LoopbackChannel


@pytest.fixture
def loopback() -> LoopbackChannel:
    return LoopbackChannel()


@pytest.fixture
def fake_brick() -> FakeBrick:
    return FakeBrick()


@pytest.fixture
def engine(fake_brick: FakeBrick) -> RequestReplyEngine:
    return RequestReplyEngine(fake_brick)


@pytest.fixture
def brick(fake_brick: FakeBrick) -> Brick:
    return Brick(fake_brick)
