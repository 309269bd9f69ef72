"""
Ports (interfaces) for the remote scheduling gateway and error logging.

These define the contract that infrastructure adapters must implement.
The engines depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod

from flashdeck.domain.models import (
    CardSource,
    ErrorLogPayload,
    GenerationBatch,
    PersistedCard,
    ReviewQueue,
)


class SchedulingGateway(ABC):
    """
    Port for the remote service that stores cards and reschedules reviews.

    Implementations raise subclasses of GatewayError; they never retry on
    their own. Retrying is the job of RetryPolicy.

    Implementations:
        - HttpSchedulingGateway: JSON over HTTP using httpx.
    """

    @abstractmethod
    async def get_review_queue(self) -> ReviewQueue:
        """
        Fetch the cards that are due for review, in presentation order.

        Raises:
            InvalidResponseError: if totalDue is nonzero but the card list is
                empty or malformed.
        """
        pass

    @abstractmethod
    async def submit_review(self, flashcard_id: str, quality: int, latency_ms: int) -> None:
        """
        Submit one quality score for rescheduling.

        Args:
            flashcard_id: Identity of the reviewed card.
            quality: Recall quality in [0, 5].
            latency_ms: Positive milliseconds between presentation and scoring.
        """
        pass

    @abstractmethod
    async def create_card(
        self, front: str, back: str, deck_id: str | None, source: CardSource
    ) -> PersistedCard:
        """Persist one card and return it with its server-assigned identity."""
        pass

    @abstractmethod
    async def get_generation_batch(self, batch_id: str) -> GenerationBatch:
        """Fetch the current state of an AI generation batch."""
        pass

    async def close(self) -> None:
        """Release network resources. Default is a no-op."""
        return None


class ErrorReporter(ABC):
    """
    Side channel for failure notifications.

    Reporting is best-effort: implementations must swallow their own failures.
    """

    @abstractmethod
    async def report(self, payload: ErrorLogPayload) -> None:
        pass
