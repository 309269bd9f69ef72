"""Content rules for candidate cards."""

from collections.abc import Iterable
from typing import Literal

from flashdeck.domain.constants import ERROR_PREVIEW_LEN, MAX_CARD_CONTENT_LENGTH
from flashdeck.domain.errors import CardValidationError
from flashdeck.domain.models import COMMITTABLE_STATUSES, CandidateCard

Side = Literal["front", "back"]
SIDES: tuple[Side, ...] = ("front", "back")

REQUIRED = "required"
TOO_LONG = "too_long"

VALIDATION_MESSAGES = {
    REQUIRED: "This field is required",
    TOO_LONG: f"Must be at most {MAX_CARD_CONTENT_LENGTH} characters",
}


def validate_card_content(side: Side, content: str) -> str | None:
    """Return an error code for one side of a card, or None if it is valid."""
    if side not in SIDES:
        raise ValueError(f"unknown card side: {side!r}")

    trimmed = content.strip()
    if not trimmed:
        return REQUIRED
    if len(trimmed) > MAX_CARD_CONTENT_LENGTH:
        return TOO_LONG
    return None


def validate_card(front: str, back: str) -> dict[str, str]:
    errors = {}
    for side, content in (("front", front), ("back", back)):
        error = validate_card_content(side, content)
        if error:
            errors[side] = error
    return errors


def validate_completion_cards(cards: Iterable[CandidateCard]) -> CardValidationError | None:
    """
    Check every accepted or edited card before it is committed.

    Returns the error for the first offending card, or None when all pass.
    """
    for index, card in enumerate(cards):
        if card.status not in COMMITTABLE_STATUSES:
            continue

        errors = validate_card(card.front, card.back)
        if not errors:
            continue

        preview = card.front.strip()[:ERROR_PREVIEW_LEN]
        side = "front" if "front" in errors else "back"
        return CardValidationError(
            f'Card "{preview}..." has invalid {side} content',
            card_index=index,
            errors=errors,
        )
    return None
