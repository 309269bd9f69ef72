"""
Batch triage engine for AI-generated candidate cards.

The learner steps through a batch, accepting, editing or deleting each card,
then commits the accepted subset. Committing is one creation call per card;
a failure stops the sequence and the result reports exactly which cards were
persisted, which one failed and which were never attempted.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from flashdeck.application.error_reporting import report_failure
from flashdeck.application.retry import RetryPolicy
from flashdeck.application.validation import (
    Side,
    validate_card,
    validate_card_content,
    validate_completion_cards,
)
from flashdeck.domain.constants import (
    BATCH_POLL_ATTEMPTS,
    BATCH_POLL_INTERVAL,
    COMMIT_MAX_ATTEMPTS,
    GENERATE_PAGE_CONTEXT,
    LOAD_MAX_ATTEMPTS,
)
from flashdeck.domain.errors import (
    ErrorKind,
    GatewayError,
    InvalidStateError,
    OperationCancelledError,
)
from flashdeck.domain.interfaces import ErrorReporter, SchedulingGateway
from flashdeck.domain.models import (
    COMMITTABLE_STATUSES,
    CandidateCard,
    CardStatus,
    ErrorInfo,
    GenerationStatus,
    PersistedCard,
)

logger = logging.getLogger(__name__)

CardInput = Mapping[str, Any] | tuple[str, str]


@dataclass(frozen=True)
class CommitResult:
    """
    Outcome of BatchTriageEngine.complete().

    Attributes:
        persisted: Every card of this batch that now exists on the server,
            including cards saved by an earlier, partially failed pass.
        failed: The card whose validation or creation failed, if any.
        not_attempted: Committable cards after `failed` that were never sent.
        error: Why the commit stopped. None on full success.
    """

    persisted: tuple[PersistedCard, ...] = ()
    failed: CandidateCard | None = None
    not_attempted: tuple[CandidateCard, ...] = ()
    error: ErrorInfo | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_partial(self) -> bool:
        return self.error is not None and len(self.persisted) > 0


def _as_pair(item: CardInput) -> tuple[str, str]:
    if isinstance(item, Mapping):
        return str(item.get("front") or ""), str(item.get("back") or "")
    front, back = item
    return front, back


class BatchTriageEngine:
    """
    Owns one triage batch: the candidate cards, the cursor and the edit buffer.

    Mutating operations are rejected while a commit or batch load is in
    flight (`is_processing`).
    """

    def __init__(
        self,
        gateway: SchedulingGateway,
        reporter: ErrorReporter | None = None,
        deck_id: str | None = None,
        commit_policy: RetryPolicy | None = None,
        load_policy: RetryPolicy | None = None,
        poll_interval: float = BATCH_POLL_INTERVAL,
        poll_attempts: int = BATCH_POLL_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ):
        self._gateway = gateway
        self._reporter = reporter
        self._default_deck_id = deck_id
        self._commit_policy = commit_policy or RetryPolicy(max_attempts=COMMIT_MAX_ATTEMPTS)
        self._load_policy = load_policy or RetryPolicy(max_attempts=LOAD_MAX_ATTEMPTS)
        self._poll_interval = poll_interval
        self._poll_attempts = poll_attempts
        self._sleep = sleep or asyncio.sleep
        self._generation = 0
        self._reset()

    def _reset(self) -> None:
        self.cards: list[CandidateCard] = []
        self.current_step = 0
        self.deck_id = self._default_deck_id
        self.error: ErrorInfo | None = None
        self.is_processing = False
        self.generation_status: GenerationStatus | None = None
        self._persisted: list[PersistedCard] = []
        self._leave_card()

    def _clear_edit(self) -> None:
        self.is_editing = False
        self.draft: dict[str, str] = {}
        self.validation_errors: dict[str, str] = {}

    def _leave_card(self) -> None:
        self.is_flipped = False
        self._clear_edit()

    # ------------------------------------------------------------------
    # State exposure
    # ------------------------------------------------------------------

    @property
    def current_card(self) -> CandidateCard | None:
        if not self.cards:
            return None
        return self.cards[self.current_step]

    @property
    def card_statuses(self) -> list[CardStatus]:
        return [card.status for card in self.cards]

    @property
    def has_pending_cards(self) -> bool:
        return any(card.status is CardStatus.PENDING for card in self.cards)

    @property
    def has_accepted_cards(self) -> bool:
        return any(card.status in COMMITTABLE_STATUSES for card in self.cards)

    @property
    def is_empty(self) -> bool:
        """Nothing left to review. Distinct from every card having been reviewed."""
        return not self.cards

    @property
    def persisted(self) -> tuple[PersistedCard, ...]:
        return tuple(self._persisted)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_batch(self, cards: Iterable[CardInput], deck_id: str | None = None) -> None:
        """Start a new batch from freshly generated front/back pairs."""
        self._ensure_idle()
        self._load(cards, deck_id)

    def _load(self, cards: Iterable[CardInput], deck_id: str | None) -> None:
        self._reset()
        if deck_id is not None:
            self.deck_id = deck_id
        self.cards = [
            CandidateCard.from_suggestion(index, *_as_pair(item))
            for index, item in enumerate(cards)
        ]
        logger.info(f"Triage batch loaded: {len(self.cards)} candidate cards")

    async def load_generation_batch(self, batch_id: str) -> ErrorInfo | None:
        """
        Fetch an AI generation batch and load its cards once generation finishes.

        Polls while the batch is PENDING or IN_PROGRESS. Returns None on
        success, otherwise the error (also kept in `error`).
        """
        self._ensure_idle()
        self._generation += 1
        generation = self._generation
        self._reset()
        self.is_processing = True

        try:
            for attempt in range(self._poll_attempts):
                batch = await self._load_policy.run(
                    lambda: self._gateway.get_generation_batch(batch_id),
                    is_cancelled=lambda: self._is_stale(generation),
                    describe=f"load generation batch {batch_id}",
                )
                if self._is_stale(generation):
                    return _cancelled()
                self.generation_status = batch.status
                logger.debug(
                    f"[generate] batch={batch_id} status={batch.status.value} "
                    f"({batch.completed_count}/{batch.total_count})"
                )

                if batch.status is GenerationStatus.COMPLETED:
                    self._load(batch.cards, batch.deck_id)
                    self.generation_status = batch.status
                    return None
                if batch.status is GenerationStatus.FAILED:
                    return await self._fail_load(
                        ErrorInfo(ErrorKind.GENERATION_FAILED, "Generation batch failed"),
                        generation,
                    )

                if attempt < self._poll_attempts - 1:
                    await self._sleep(self._poll_interval)
                    if self._is_stale(generation):
                        return _cancelled()

            return await self._fail_load(
                ErrorInfo(ErrorKind.TRANSIENT, "Generation batch did not finish in time"),
                generation,
            )
        except OperationCancelledError as e:
            return ErrorInfo.from_exception(e)
        except GatewayError as e:
            if self._is_stale(generation):
                return _cancelled()
            await report_failure(self._reporter, e, GENERATE_PAGE_CONTEXT)
            return await self._fail_load(ErrorInfo.from_exception(e), generation)
        finally:
            if not self._is_stale(generation):
                self.is_processing = False

    async def _fail_load(self, error: ErrorInfo, generation: int) -> ErrorInfo:
        if not self._is_stale(generation):
            self.error = error
        logger.warning(f"Generation batch not loaded: {error.message}")
        return error

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def go_to(self, step: int) -> None:
        if not 0 <= step < len(self.cards):
            raise IndexError(f"step {step} out of range for batch of {len(self.cards)}")
        self._leave_card()
        self.current_step = step

    def next(self) -> None:
        if self.cards:
            self._leave_card()
            self.current_step = min(self.current_step + 1, len(self.cards) - 1)

    def previous(self) -> None:
        if self.cards:
            self._leave_card()
            self.current_step = max(self.current_step - 1, 0)

    def flip(self) -> None:
        """Toggle between the front and the back of the current card."""
        self._require_current()
        self.is_flipped = not self.is_flipped

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    def begin_edit(self) -> None:
        card = self._require_current()
        if card.is_persisted:
            raise InvalidStateError(f"card {card.identity} is already saved")
        if not card.status.can_transition_to(CardStatus.EDITED):
            raise InvalidStateError(f"a card that is {card.status.value} cannot be edited")
        self.is_editing = True
        self.draft = {"front": card.front, "back": card.back}
        self.validation_errors = {}

    def cancel_edit(self) -> None:
        """Drop the draft. The card keeps its pre-edit text."""
        self._clear_edit()

    def update_draft(self, side: Side, text: str) -> str | None:
        """Record a draft value for one side and return its validation error code."""
        if not self.is_editing:
            raise InvalidStateError("not editing")
        error = validate_card_content(side, text)
        self.draft[side] = text
        if error:
            self.validation_errors[side] = error
        else:
            self.validation_errors.pop(side, None)
        return error

    def save(self) -> bool:
        """
        Apply the draft to the current card.

        Returns False, leaving the draft open, while either side is invalid.
        """
        self._ensure_idle()
        if not self.is_editing:
            raise InvalidStateError("not editing")
        card = self._require_current()

        self.validation_errors = validate_card(self.draft["front"], self.draft["back"])
        if self.validation_errors:
            logger.debug(f"Save refused for {card.identity}: {self.validation_errors}")
            return False

        card.apply_edit(self.draft["front"], self.draft["back"])
        self._clear_edit()
        return True

    # ------------------------------------------------------------------
    # Triage
    # ------------------------------------------------------------------

    def accept(self) -> None:
        """Accept the current pending card and move on to the next one, if any."""
        self._ensure_idle()
        card = self._require_current()
        card.accept()
        self._leave_card()
        if self.current_step < len(self.cards) - 1:
            self.current_step += 1

    def delete(self) -> None:
        """Remove the current card. Later cards shift down by one."""
        self._ensure_idle()
        card = self._require_current()
        card.mark_deleted()
        del self.cards[self.current_step]
        self._leave_card()
        self._clamp_cursor()

    def accept_all(self) -> int:
        self._ensure_idle()
        pending = [card for card in self.cards if card.status is CardStatus.PENDING]
        for card in pending:
            card.accept()
        self._clear_edit()
        return len(pending)

    def delete_all(self) -> int:
        """Remove every pending card from the batch."""
        self._ensure_idle()
        pending = [card for card in self.cards if card.status is CardStatus.PENDING]
        for card in pending:
            card.mark_deleted()
        self.cards = [card for card in self.cards if card.status is not CardStatus.DELETED]
        self._leave_card()
        self._clamp_cursor()
        return len(pending)

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    async def complete(self) -> CommitResult:
        """
        Persist every accepted or edited card, one creation call at a time.

        Content is validated locally first; an invalid card aborts the commit
        before anything is sent. Cards persisted by an earlier partial pass are
        not sent again.

        Raises:
            InvalidStateError: nothing to commit, an edit is open, no deck is set, or busy.
        """
        self._ensure_idle()
        if not self.has_accepted_cards:
            raise InvalidStateError("no accepted or edited cards to commit")
        if self.is_editing:
            raise InvalidStateError("save or cancel the open edit before completing")
        if self.deck_id is None:
            raise InvalidStateError("no deck to save cards to")

        self.error = None
        invalid = validate_completion_cards(self.cards)
        if invalid is not None:
            self.error = ErrorInfo.from_exception(invalid)
            logger.warning(f"Commit aborted: {invalid.message}")
            return CommitResult(
                persisted=self.persisted,
                failed=self.cards[invalid.card_index],
                error=self.error,
            )

        to_commit = [
            card
            for card in self.cards
            if card.status in COMMITTABLE_STATUSES and not card.is_persisted
        ]
        generation = self._generation
        self.is_processing = True
        saved_now: list[PersistedCard] = []

        try:
            for position, card in enumerate(to_commit):
                try:
                    saved = await self._commit_policy.run(
                        lambda card=card: self._gateway.create_card(
                            card.front, card.back, self.deck_id, card.source
                        ),
                        is_cancelled=lambda: self._is_stale(generation),
                        describe=f"create card {card.identity}",
                    )
                except OperationCancelledError as e:
                    return CommitResult(
                        persisted=tuple(saved_now), error=ErrorInfo.from_exception(e)
                    )
                except GatewayError as e:
                    if self._is_stale(generation):
                        return CommitResult(persisted=tuple(saved_now), error=_cancelled())
                    self.error = ErrorInfo.from_exception(e)
                    await report_failure(self._reporter, e, GENERATE_PAGE_CONTEXT)
                    result = CommitResult(
                        persisted=self.persisted,
                        failed=card,
                        not_attempted=tuple(to_commit[position + 1 :]),
                        error=self.error,
                    )
                    logger.error(
                        f"Commit stopped at {card.identity}: {len(result.persisted)} persisted, "
                        f"{len(result.not_attempted) + 1} not persisted"
                    )
                    return result

                saved_now.append(saved)
                if self._is_stale(generation):
                    return CommitResult(persisted=tuple(saved_now), error=_cancelled())
                card.mark_persisted(saved.id)
                self._persisted.append(saved)
                logger.debug(f"[create] {card.identity} source={card.source.value}")
        finally:
            if not self._is_stale(generation):
                self.is_processing = False

        result = CommitResult(persisted=self.persisted)
        logger.info(f"Triage batch committed: {len(result.persisted)} cards")
        self._reset()
        return result

    def close(self) -> None:
        """Discard the batch. In-flight loads and commits are abandoned."""
        self._generation += 1
        self._reset()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_current(self) -> CandidateCard:
        card = self.current_card
        if card is None:
            raise InvalidStateError("the batch is empty")
        return card

    def _ensure_idle(self) -> None:
        if self.is_processing:
            raise InvalidStateError("another batch operation is still in flight")

    def _clamp_cursor(self) -> None:
        if not self.cards:
            self.current_step = 0
        elif self.current_step >= len(self.cards):
            self.current_step = len(self.cards) - 1

    def _is_stale(self, generation: int) -> bool:
        return generation != self._generation


def _cancelled() -> ErrorInfo:
    return ErrorInfo.from_exception(OperationCancelledError("triage batch closed"))

