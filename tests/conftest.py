from unittest.mock import AsyncMock

import pytest

from flashdeck.domain.interfaces import ErrorReporter, SchedulingGateway
from flashdeck.domain.models import CardSource, DueCard, PersistedCard, ReviewQueue


class FakeClock:
    """Monotonic clock in seconds that only moves when told to."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: int) -> None:
        self.now += ms / 1000


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay):
        sleeps.append(delay)

    return _sleep


@pytest.fixture
def gateway():
    return AsyncMock(spec=SchedulingGateway)


@pytest.fixture
def reporter():
    return AsyncMock(spec=ErrorReporter)


def make_queue(n: int, total_due: int | None = None) -> ReviewQueue:
    cards = tuple(DueCard(id=f"card-{i}", front=f"Q{i}", back=f"A{i}") for i in range(n))
    return ReviewQueue(cards=cards, total_due=n if total_due is None else total_due)


def make_persisted(card_id: str, front: str = "Q", back: str = "A", source=CardSource.AI):
    return PersistedCard(id=card_id, front=front, back=back, source=source, deck_id="deck-1")


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config/logs
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def queue_of():
    return make_queue


@pytest.fixture
def persisted():
    return make_persisted
