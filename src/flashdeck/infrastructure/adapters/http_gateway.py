import logging
from typing import Any

import httpx

from flashdeck.domain.constants import (
    DEFAULT_GATEWAY_URL,
    DEFAULT_RATE_LIMIT_DELAY,
    FLASHCARDS_PATH,
    GENERATION_BATCH_PATH,
    MISSING_BACK_TEXT,
    MISSING_FRONT_TEXT,
    REQUEST_TIMEOUT,
    RESPONSIVENESS_TIMEOUT,
    REVIEW_QUEUE_PATH,
    REVIEWS_PATH,
    USER_AGENT,
)
from flashdeck.domain.errors import (
    AuthenticationRequiredError,
    ClientRequestError,
    ConflictError,
    GatewayError,
    InvalidResponseError,
    NotFoundError,
    RateLimitedError,
    TransientGatewayError,
)
from flashdeck.domain.interfaces import SchedulingGateway
from flashdeck.domain.models import (
    CardSource,
    DueCard,
    GenerationBatch,
    GenerationStatus,
    PersistedCard,
    ReviewQueue,
)


class HttpSchedulingGateway(SchedulingGateway):
    """Adapter for the remote scheduling service (JSON over HTTP)."""

    def __init__(
        self,
        url: str = DEFAULT_GATEWAY_URL,
        api_token: str | None = None,
        timeout: float = REQUEST_TIMEOUT,
        rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.url = url.rstrip("/")
        self.timeout = timeout
        self.rate_limit_delay = rate_limit_delay
        self._headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        if api_token:
            self._headers["Authorization"] = f"Bearer {api_token}"
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self.logger.debug(f"HttpSchedulingGateway initialized with url={self.url}")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.url,
                headers=self._headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def is_responsive(self) -> bool:
        """Check if the gateway answers the queue endpoint with anything but a 5xx."""
        try:
            resp = await self._get_client().get(
                REVIEW_QUEUE_PATH, timeout=RESPONSIVENESS_TIMEOUT
            )
            return resp.status_code < 500
        except httpx.HTTPError:
            return False

    # ------------------------------------------------------------------
    # SchedulingGateway
    # ------------------------------------------------------------------

    async def get_review_queue(self) -> ReviewQueue:
        data = await self._request("GET", REVIEW_QUEUE_PATH)
        if not isinstance(data, dict):
            raise InvalidResponseError("Invalid review queue data received")

        total_due = data.get("totalDue")
        if isinstance(total_due, bool) or not isinstance(total_due, int) or total_due < 0:
            raise InvalidResponseError("Invalid review queue data received: bad totalDue")
        if total_due == 0:
            return ReviewQueue(cards=(), total_due=0)

        raw_cards = data.get("data")
        if not isinstance(raw_cards, list) or not raw_cards:
            raise InvalidResponseError("Invalid review queue data received")

        cards = tuple(self._parse_due_card(item) for item in raw_cards)
        self.logger.debug(f"[queue] totalDue={total_due} received={len(cards)}")
        return ReviewQueue(cards=cards, total_due=total_due)

    async def submit_review(self, flashcard_id: str, quality: int, latency_ms: int) -> None:
        payload = {"flashcardId": flashcard_id, "quality": quality, "latencyMs": latency_ms}
        await self._request("POST", REVIEWS_PATH, json=payload)

    async def create_card(
        self, front: str, back: str, deck_id: str | None, source: CardSource
    ) -> PersistedCard:
        payload: dict[str, Any] = {"front": front, "back": back, "source": source.value}
        if deck_id:
            payload["deckId"] = deck_id
        data = await self._request("POST", FLASHCARDS_PATH, json=payload)
        if not isinstance(data, dict) or not data.get("id"):
            raise InvalidResponseError("Card creation returned no id")

        card = self._parse_persisted_card(data, fallback_source=source)
        self.logger.info(f"[create] id={card.id} deck={card.deck_id} source={card.source.value}")
        return card

    async def get_generation_batch(self, batch_id: str) -> GenerationBatch:
        data = await self._request("GET", GENERATION_BATCH_PATH.format(batch_id=batch_id))
        if not isinstance(data, dict):
            raise InvalidResponseError("Invalid generation batch data received")

        try:
            status = GenerationStatus(data.get("status"))
        except ValueError as e:
            raise InvalidResponseError(f"Unknown generation batch status: {data.get('status')}") from e

        cards: list[tuple[str, str]] = []
        deck_id = None
        try:
            for generation in data.get("generations") or []:
                deck_id = deck_id or generation.get("deckId")
                for flashcard in generation.get("flashcards") or []:
                    cards.append(
                        (str(flashcard.get("front") or ""), str(flashcard.get("back") or ""))
                    )
            completed_count = int(data.get("completedCount") or 0)
            total_count = int(data.get("totalCount") or 0)
        except (AttributeError, TypeError, ValueError) as e:
            raise InvalidResponseError(f"Invalid generation batch data received: {e}") from e

        return GenerationBatch(
            id=str(data.get("id") or batch_id),
            status=status,
            cards=tuple(cards),
            deck_id=str(deck_id) if deck_id else None,
            completed_count=completed_count,
            total_count=total_count,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_source(value: Any, default: CardSource = CardSource.MANUAL) -> CardSource:
        try:
            return CardSource(value)
        except ValueError:
            return default

    def _parse_due_card(self, item: Any) -> DueCard:
        if not isinstance(item, dict) or not item.get("id"):
            raise InvalidResponseError(f"Invalid review queue entry: {item!r}")
        return DueCard(
            id=str(item["id"]),
            front=item.get("front") or MISSING_FRONT_TEXT,
            back=item.get("back") or MISSING_BACK_TEXT,
            source=self._parse_source(item.get("source")),
        )

    def _parse_persisted_card(self, data: dict, fallback_source: CardSource) -> PersistedCard:
        return PersistedCard(
            id=str(data["id"]),
            front=str(data.get("front") or ""),
            back=str(data.get("back") or ""),
            source=self._parse_source(data.get("source"), default=fallback_source),
            deck_id=data.get("deckId"),
            ease_factor=data.get("easeFactor"),
            interval_days=data.get("intervalDays"),
            repetition=data.get("repetition"),
            next_review_at=data.get("nextReviewAt"),
            created_at=data.get("createdAt"),
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            resp = await self._get_client().request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            self.logger.warning(f"{method} {path} timed out: {e}")
            raise TransientGatewayError(f"Request timed out: {e}") from e
        except httpx.TransportError as e:
            self.logger.warning(f"{method} {path} failed: {e}")
            raise TransientGatewayError(f"Network error: {e}") from e

        if resp.status_code >= 400:
            error = self._error_for(resp)
            self.logger.error(f"{method} {path} -> HTTP {resp.status_code}: {error.message}")
            raise error

        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise InvalidResponseError(
                f"Response is not valid JSON (HTTP {resp.status_code})", resp.status_code
            ) from e

    def _error_for(self, resp: httpx.Response) -> GatewayError:
        status = resp.status_code
        if status == 401:
            return AuthenticationRequiredError()
        if status == 404:
            return NotFoundError()
        if status == 429:
            return RateLimitedError(retry_after=self._retry_after(resp))

        message = self._error_message(resp) or f"Request failed: HTTP {status}"
        if status >= 500:
            return TransientGatewayError(message, status)
        if status == 409:
            return ConflictError(message, status)
        return ClientRequestError(message, status)

    @staticmethod
    def _error_message(resp: httpx.Response) -> str | None:
        try:
            body = resp.json()
        except ValueError:
            return None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            return body["error"].get("message")
        return None

    def _retry_after(self, resp: httpx.Response) -> float:
        raw = resp.headers.get("Retry-After")
        if raw is None:
            return self.rate_limit_delay
        try:
            return max(0.0, float(raw))
        except ValueError:
            return self.rate_limit_delay
