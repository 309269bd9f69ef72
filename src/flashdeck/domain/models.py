"""
Domain models for review sessions and card triage.

These are pure data structures with no I/O or external dependencies.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from flashdeck.domain.constants import MAX_QUALITY, MIN_QUALITY
from flashdeck.domain.errors import ErrorKind, FlashdeckError, InvalidTransitionError


class CardSource(str, Enum):
    """Provenance of a card."""

    MANUAL = "manual"
    AI = "ai"
    AI_EDITED = "ai_edited"

    def escalate_on_edit(self) -> "CardSource":
        """Only untouched AI cards become ai_edited; manual and ai_edited stay as they are."""
        if self is CardSource.AI:
            return CardSource.AI_EDITED
        return self


class CardStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EDITED = "edited"
    DELETED = "deleted"

    def can_transition_to(self, target: "CardStatus") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[CardStatus, frozenset[CardStatus]] = {
    CardStatus.PENDING: frozenset(
        {CardStatus.ACCEPTED, CardStatus.EDITED, CardStatus.DELETED}
    ),
    CardStatus.ACCEPTED: frozenset({CardStatus.DELETED}),
    CardStatus.EDITED: frozenset({CardStatus.EDITED, CardStatus.DELETED}),
    CardStatus.DELETED: frozenset(),
}

# Statuses that are committed by BatchTriageEngine.complete()
COMMITTABLE_STATUSES = frozenset({CardStatus.ACCEPTED, CardStatus.EDITED})


def validate_quality(quality: Any) -> int:
    """
    Check that a quality score is an integer in [0, 5].

    Raises:
        ValueError: for bools, non-integers and out-of-range values.
    """
    if isinstance(quality, bool) or not isinstance(quality, int):
        raise ValueError(f"quality must be an integer, got {quality!r}")
    if not MIN_QUALITY <= quality <= MAX_QUALITY:
        raise ValueError(f"quality must be between {MIN_QUALITY} and {MAX_QUALITY}, got {quality}")
    return quality


# ---------------------------------------------------------------------------
# Review session
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DueCard:
    """A card whose review is due, as delivered by the gateway."""

    id: str
    front: str
    back: str
    source: CardSource = CardSource.MANUAL


@dataclass
class SessionCardView:
    """The card currently presented to the learner."""

    card: DueCard
    revealed: bool = False

    @property
    def id(self) -> str:
        return self.card.id


@dataclass(frozen=True)
class ReviewQueue:
    cards: tuple[DueCard, ...]
    total_due: int

    def __len__(self) -> int:
        return len(self.cards)


@dataclass
class SessionProgress:
    """
    Running aggregate for a review session.

    Attributes:
        current_index: 0-based index of the presented card. Never decreases.
        total_cards: Number of cards in the session.
        completed_count: Successful submissions so far.
        average_latency_ms: Cumulative mean of recorded latencies.
    """

    current_index: int = 0
    total_cards: int = 0
    completed_count: int = 0
    average_latency_ms: float = 0.0
    started_at: float = field(default_factory=time.time)

    @property
    def is_finished(self) -> bool:
        return self.total_cards > 0 and self.completed_count >= self.total_cards

    def record(self, latency_ms: int) -> None:
        prev = self.completed_count
        self.average_latency_ms = (self.average_latency_ms * prev + latency_ms) / (prev + 1)
        self.completed_count = prev + 1


class SessionState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    ACTIVE = "active"
    COMPLETED = "completed"
    EMPTY = "empty"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Triage
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Unpersisted:
    """Identity of a candidate card that has not been written to storage yet."""

    local_index: int

    def __str__(self) -> str:
        return f"local-{self.local_index}"


@dataclass(frozen=True)
class Persisted:
    server_id: str

    def __str__(self) -> str:
        return self.server_id


CardIdentity = Unpersisted | Persisted


@dataclass
class CandidateCard:
    """An AI-suggested card inside a triage batch."""

    identity: CardIdentity
    front: str
    back: str
    original_front: str
    original_back: str
    source: CardSource = CardSource.AI
    status: CardStatus = CardStatus.PENDING
    is_edited: bool = False

    @classmethod
    def from_suggestion(cls, local_index: int, front: str, back: str) -> "CandidateCard":
        return cls(
            identity=Unpersisted(local_index),
            front=front,
            back=back,
            original_front=front,
            original_back=back,
        )

    @property
    def is_persisted(self) -> bool:
        return isinstance(self.identity, Persisted)

    def _move_to(self, target: CardStatus) -> None:
        if not self.status.can_transition_to(target):
            raise InvalidTransitionError(
                f"card {self.identity} cannot move from {self.status.value} to {target.value}"
            )
        self.status = target

    def accept(self) -> None:
        self._move_to(CardStatus.ACCEPTED)

    def apply_edit(self, front: str, back: str) -> None:
        self._move_to(CardStatus.EDITED)
        self.front = front
        self.back = back
        self.is_edited = True
        self.source = self.source.escalate_on_edit()

    def mark_deleted(self) -> None:
        self._move_to(CardStatus.DELETED)

    def mark_persisted(self, server_id: str) -> None:
        self.identity = Persisted(server_id)


@dataclass(frozen=True)
class PersistedCard:
    """Server representation of a card returned by card creation."""

    id: str
    front: str
    back: str
    source: CardSource
    deck_id: str | None = None
    ease_factor: float | None = None
    interval_days: int | None = None
    repetition: int | None = None
    next_review_at: str | None = None
    created_at: str | None = None


class GenerationStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class GenerationBatch:
    """A batch of AI generations as reported by the gateway."""

    id: str
    status: GenerationStatus
    cards: tuple[tuple[str, str], ...] = ()
    deck_id: str | None = None
    completed_count: int = 0
    total_count: int = 0


# ---------------------------------------------------------------------------
# Errors surfaced as state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ErrorInfo:
    """An expected failure, exposed to the caller as data instead of an exception."""

    kind: ErrorKind
    message: str
    status_code: int | None = None

    @classmethod
    def from_exception(cls, exc: FlashdeckError) -> "ErrorInfo":
        return cls(
            kind=exc.kind,
            message=exc.message,
            status_code=getattr(exc, "status_code", None),
        )

    @property
    def requires_reauthentication(self) -> bool:
        return self.kind is ErrorKind.AUTHENTICATION


# ---------------------------------------------------------------------------
# Error logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ErrorLogPayload:
    path: str
    message: str
    stack: str | None = None
    user_agent: str | None = None
    component_stack: str | None = None

    def as_dict(self) -> dict[str, str]:
        data = {
            "path": self.path,
            "message": self.message,
            "stack": self.stack,
            "userAgent": self.user_agent,
            "componentStack": self.component_stack,
        }
        return {k: v for k, v in data.items() if v is not None}
