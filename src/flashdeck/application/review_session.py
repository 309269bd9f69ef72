"""
Review session engine.

Walks a learner through the due-card queue:
1. Loads the queue from the gateway (Loading -> Active | Empty | Failed)
2. Presents one card at a time, front first, until it is revealed
3. Submits the quality score with bounded retry and advances only on success
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from flashdeck.application.error_reporting import report_failure
from flashdeck.application.retry import RetryPolicy
from flashdeck.domain.constants import (
    LOAD_MAX_ATTEMPTS,
    MIN_LATENCY_MS,
    REVIEW_PAGE_CONTEXT,
    SUBMIT_MAX_ATTEMPTS,
)
from flashdeck.domain.errors import (
    GatewayError,
    InvalidResponseError,
    InvalidStateError,
    OperationCancelledError,
)
from flashdeck.domain.interfaces import ErrorReporter, SchedulingGateway
from flashdeck.domain.models import (
    DueCard,
    ErrorInfo,
    ReviewQueue,
    SessionCardView,
    SessionProgress,
    SessionState,
    validate_quality,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of one submit_review() call."""

    ok: bool
    latency_ms: int
    error: ErrorInfo | None = None
    session_completed: bool = False


class ReviewSessionEngine:
    """
    Stateful review session over a SchedulingGateway.

    Single-threaded and cooperative: the only suspension points are the
    gateway calls. A generation counter is bumped on teardown so that a load
    or submission still in flight abandons its retries and drops its result.
    """

    def __init__(
        self,
        gateway: SchedulingGateway,
        reporter: ErrorReporter | None = None,
        load_policy: RetryPolicy | None = None,
        submit_policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._gateway = gateway
        self._reporter = reporter
        self._load_policy = load_policy or RetryPolicy(max_attempts=LOAD_MAX_ATTEMPTS)
        self._submit_policy = submit_policy or RetryPolicy(max_attempts=SUBMIT_MAX_ATTEMPTS)
        self._clock = clock
        self._generation = 0
        self._reset()

    def _reset(self) -> None:
        self.state = SessionState.IDLE
        self.queue: ReviewQueue | None = None
        self.current_card: SessionCardView | None = None
        self.progress = SessionProgress()
        self.error: ErrorInfo | None = None
        self.is_loading = False
        self.is_submitting = False
        self._card_started_at: float | None = None

    # ------------------------------------------------------------------
    # State exposure
    # ------------------------------------------------------------------

    @property
    def is_revealed(self) -> bool:
        return self.current_card is not None and self.current_card.revealed

    def peek_next(self) -> DueCard | None:
        """The card that follows the current one, if any."""
        if self.queue is None or self.current_card is None:
            return None
        next_index = self.progress.current_index + 1
        if next_index >= self.progress.total_cards:
            return None
        return self.queue.cards[next_index]

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def load_queue(self) -> SessionState:
        """
        Fetch due cards and start a new session.

        Returns the resulting state. Failures never raise; they leave the
        session in FAILED with `error` set so the caller can offer a retry.
        """
        if self.is_loading:
            raise InvalidStateError("review queue is already loading")

        self._generation += 1
        generation = self._generation
        self._reset()
        self.state = SessionState.LOADING
        self.is_loading = True

        try:
            queue = await self._load_policy.run(
                self._gateway.get_review_queue,
                is_cancelled=lambda: self._is_stale(generation),
                describe="load review queue",
            )
            if self._is_stale(generation):
                return self.state
            if queue.total_due > 0 and not queue.cards:
                raise InvalidResponseError("Invalid review queue data received")
        except OperationCancelledError:
            return self.state
        except GatewayError as e:
            if self._is_stale(generation):
                return self.state
            self.is_loading = False
            self.state = SessionState.FAILED
            self.error = ErrorInfo.from_exception(e)
            await report_failure(self._reporter, e, REVIEW_PAGE_CONTEXT)
            return self.state

        self.is_loading = False
        self.queue = queue

        if queue.total_due == 0:
            logger.info("Review queue is empty")
            self.state = SessionState.EMPTY
            return self.state

        self.progress = SessionProgress(total_cards=len(queue.cards))
        self._present(0)
        self.state = SessionState.ACTIVE
        logger.info(f"Review session started: {len(queue.cards)} cards ({queue.total_due} due)")
        return self.state

    def reveal(self) -> None:
        """Show the back of the current card. Calling it again is a no-op."""
        if self.state is not SessionState.ACTIVE or self.current_card is None:
            raise InvalidStateError("No current card to reveal")
        self.current_card.revealed = True

    async def submit_review(self, quality: int) -> SubmitResult:
        """
        Send the quality score for the current, revealed card.

        Raises:
            InvalidStateError: no active revealed card, or a submission is in flight.
            ValueError: quality outside [0, 5].
        """
        if self.is_submitting:
            raise InvalidStateError("a review submission is already in flight")
        if self.state is not SessionState.ACTIVE or self.current_card is None:
            raise InvalidStateError("No current card to review")
        if not self.current_card.revealed:
            raise InvalidStateError("the card must be revealed before it can be scored")
        quality = validate_quality(quality)

        card = self.current_card.card
        latency_ms = self._elapsed_ms()
        generation = self._generation
        self.is_submitting = True
        self.error = None

        try:
            await self._submit_policy.run(
                lambda: self._gateway.submit_review(card.id, quality, latency_ms),
                is_cancelled=lambda: self._is_stale(generation),
                describe=f"submit review for card {card.id}",
            )
        except OperationCancelledError as e:
            return SubmitResult(ok=False, latency_ms=latency_ms, error=ErrorInfo.from_exception(e))
        except GatewayError as e:
            if self._is_stale(generation):
                return SubmitResult(
                    ok=False,
                    latency_ms=latency_ms,
                    error=ErrorInfo.from_exception(OperationCancelledError("session closed")),
                )
            self.is_submitting = False
            self.error = ErrorInfo.from_exception(e)
            await report_failure(self._reporter, e, REVIEW_PAGE_CONTEXT)
            return SubmitResult(ok=False, latency_ms=latency_ms, error=self.error)

        if self._is_stale(generation):
            return SubmitResult(
                ok=False,
                latency_ms=latency_ms,
                error=ErrorInfo.from_exception(OperationCancelledError("session closed")),
            )

        self.is_submitting = False
        self.progress.record(latency_ms)
        logger.debug(
            f"[review] card={card.id} quality={quality} latency={latency_ms}ms "
            f"({self.progress.completed_count}/{self.progress.total_cards})"
        )

        if self.progress.is_finished:
            self.current_card = None
            self._card_started_at = None
            self.state = SessionState.COMPLETED
            logger.info(
                f"Review session completed: {self.progress.completed_count} cards, "
                f"avg latency {self.progress.average_latency_ms:.0f}ms"
            )
            return SubmitResult(ok=True, latency_ms=latency_ms, session_completed=True)

        self._present(self.progress.current_index + 1)
        return SubmitResult(ok=True, latency_ms=latency_ms)

    def exit_session(self) -> None:
        """Client-side teardown. In-flight work is abandoned, nothing is sent."""
        self._generation += 1
        self._reset()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _present(self, index: int) -> None:
        if self.queue is None:
            raise InvalidStateError("no review queue loaded")
        self.progress.current_index = index
        self.current_card = SessionCardView(card=self.queue.cards[index])
        self._card_started_at = self._clock()

    def _elapsed_ms(self) -> int:
        if self._card_started_at is None:
            return MIN_LATENCY_MS
        elapsed = int(round((self._clock() - self._card_started_at) * 1000))
        return max(MIN_LATENCY_MS, elapsed)

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation
