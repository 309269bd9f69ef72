import pytest

from flashdeck.application.batch_triage import BatchTriageEngine
from flashdeck.application.retry import RetryPolicy
from flashdeck.domain.errors import (
    ClientRequestError,
    ErrorKind,
    InvalidStateError,
    TransientGatewayError,
)
from flashdeck.domain.models import (
    CardSource,
    CardStatus,
    GenerationBatch,
    GenerationStatus,
    Persisted,
)


def _pairs(n):
    return [{"front": f"f{i}", "back": f"b{i}"} for i in range(n)]


@pytest.fixture
def engine(gateway, reporter, fake_sleep):
    return BatchTriageEngine(
        gateway=gateway,
        reporter=reporter,
        deck_id="deck-1",
        commit_policy=RetryPolicy(max_attempts=1, sleep=fake_sleep),
        load_policy=RetryPolicy(max_attempts=2, base_delay=1.0, sleep=fake_sleep),
        poll_interval=0.5,
        poll_attempts=3,
        sleep=fake_sleep,
    )


@pytest.fixture
def saving(gateway, persisted):
    """Make create_card echo back a persisted card with a sequential id."""
    counter = iter(range(1, 100))

    async def create(front, back, deck_id, source):
        return persisted(f"srv-{next(counter)}", front, back, source)

    gateway.create_card.side_effect = create
    return gateway


# --- Loading ---


def test_load_batch_starts_at_first_pending_card(engine):
    engine.load_batch(_pairs(3))

    assert engine.current_step == 0
    assert engine.card_statuses == [CardStatus.PENDING] * 3
    assert engine.current_card.front == "f0"
    assert engine.current_card.source is CardSource.AI
    assert str(engine.current_card.identity) == "local-0"
    assert engine.has_pending_cards
    assert not engine.has_accepted_cards


def test_load_batch_accepts_pairs_and_deck_override(engine):
    engine.load_batch([("q", "a")], deck_id="deck-7")

    assert engine.current_card.back == "a"
    assert engine.deck_id == "deck-7"


def test_load_batch_replaces_previous_batch(engine):
    engine.load_batch(_pairs(3))
    engine.accept()

    engine.load_batch(_pairs(1))

    assert engine.card_statuses == [CardStatus.PENDING]
    assert engine.current_step == 0


# --- Navigation ---


def test_next_and_previous_clamp(engine):
    engine.load_batch(_pairs(2))

    engine.previous()
    assert engine.current_step == 0
    engine.next()
    engine.next()
    assert engine.current_step == 1


def test_go_to_out_of_range(engine):
    engine.load_batch(_pairs(2))

    with pytest.raises(IndexError):
        engine.go_to(2)
    with pytest.raises(IndexError):
        engine.go_to(-1)
    assert engine.current_step == 0


def test_navigation_discards_open_edit(engine):
    engine.load_batch(_pairs(2))
    engine.begin_edit()
    engine.update_draft("front", "changed")

    engine.go_to(1)

    assert not engine.is_editing
    assert engine.cards[0].front == "f0"
    assert engine.cards[0].status is CardStatus.PENDING


def test_navigation_on_empty_batch_is_noop(engine):
    engine.next()
    engine.previous()
    assert engine.current_step == 0
    assert engine.current_card is None


# --- Triage ---


def test_accept_advances_cursor(engine):
    engine.load_batch(_pairs(2))

    engine.accept()
    assert engine.card_statuses[0] is CardStatus.ACCEPTED
    assert engine.current_step == 1

    engine.accept()
    assert engine.current_step == 1


def test_accept_twice_is_rejected(engine):
    engine.load_batch(_pairs(1))
    engine.accept()

    with pytest.raises(InvalidStateError):
        engine.accept()


def test_delete_removes_card_and_keeps_position(engine):
    engine.load_batch(_pairs(3))
    engine.go_to(1)

    engine.delete()

    assert [c.front for c in engine.cards] == ["f0", "f2"]
    assert engine.current_step == 1
    assert engine.current_card.front == "f2"


def test_delete_last_card_moves_cursor_back(engine):
    engine.load_batch(_pairs(2))
    engine.go_to(1)

    engine.delete()

    assert engine.current_step == 0
    engine.delete()
    assert engine.is_empty
    assert engine.current_step == 0
    with pytest.raises(InvalidStateError):
        engine.delete()


def test_accepted_card_can_still_be_deleted(engine):
    engine.load_batch(_pairs(2))
    engine.accept()
    engine.previous()

    engine.delete()

    assert [c.front for c in engine.cards] == ["f1"]


def test_accept_all_skips_decided_cards(engine):
    engine.load_batch(_pairs(4))
    engine.go_to(1)
    engine.begin_edit()
    engine.update_draft("front", "edited")
    assert engine.save()
    engine.go_to(2)
    engine.delete()

    assert engine.accept_all() == 2

    assert engine.card_statuses == [CardStatus.ACCEPTED, CardStatus.EDITED, CardStatus.ACCEPTED]
    assert not engine.has_pending_cards


def test_delete_all_removes_only_pending(engine):
    engine.load_batch(_pairs(3))
    engine.accept()

    assert engine.delete_all() == 2

    assert [c.front for c in engine.cards] == ["f0"]
    assert engine.current_step == 0
    assert engine.delete_all() == 0


# --- Editing ---


def test_edit_and_save(engine):
    engine.load_batch(_pairs(1))
    engine.begin_edit()
    assert engine.draft == {"front": "f0", "back": "b0"}

    assert engine.update_draft("back", "better answer") is None
    assert engine.save()

    card = engine.current_card
    assert card.status is CardStatus.EDITED
    assert card.back == "better answer"
    assert card.original_back == "b0"
    assert card.is_edited
    assert card.source is CardSource.AI_EDITED
    assert not engine.is_editing


def test_blank_front_blocks_save(engine):
    """A whitespace-only front is required, so the draft cannot be saved."""
    engine.load_batch(_pairs(1))
    engine.begin_edit()

    assert engine.update_draft("front", "   ") == "required"
    assert engine.validation_errors == {"front": "required"}
    assert engine.save() is False

    assert engine.is_editing
    assert engine.current_card.front == "f0"
    assert engine.current_card.status is CardStatus.PENDING


def test_too_long_content_blocks_save(engine):
    engine.load_batch(_pairs(1))
    engine.begin_edit()

    assert engine.update_draft("back", "x" * 1001) == "too_long"
    assert engine.save() is False
    assert engine.update_draft("back", "x" * 1000) is None
    assert engine.validation_errors == {}
    assert engine.save()


def test_cancel_edit_keeps_original_text(engine):
    engine.load_batch(_pairs(1))
    engine.begin_edit()
    engine.update_draft("front", "discarded")

    engine.cancel_edit()

    assert not engine.is_editing
    assert engine.current_card.front == "f0"
    assert engine.current_card.status is CardStatus.PENDING
    assert engine.current_card.source is CardSource.AI


def test_edited_card_can_be_edited_again(engine):
    engine.load_batch(_pairs(1))
    for text in ("one", "two"):
        engine.begin_edit()
        engine.update_draft("front", text)
        assert engine.save()

    assert engine.current_card.front == "two"
    assert engine.current_card.source is CardSource.AI_EDITED


def test_accepted_card_is_not_editable(engine):
    engine.load_batch(_pairs(1))
    engine.accept()

    with pytest.raises(InvalidStateError):
        engine.begin_edit()


def test_update_draft_requires_open_edit(engine):
    engine.load_batch(_pairs(1))

    with pytest.raises(InvalidStateError):
        engine.update_draft("front", "x")
    with pytest.raises(InvalidStateError):
        engine.save()


def test_accept_all_closes_open_edit(engine):
    engine.load_batch(_pairs(2))
    engine.begin_edit()
    engine.update_draft("front", "f0 fixed")

    engine.accept_all()

    assert not engine.is_editing
    assert engine.draft == {}
    assert engine.card_statuses == [CardStatus.ACCEPTED, CardStatus.ACCEPTED]
    assert engine.cards[0].front == "f0"
    with pytest.raises(InvalidStateError):
        engine.save()


@pytest.mark.asyncio
async def test_complete_after_accept_all_during_edit(engine, saving):
    engine.load_batch(_pairs(2))
    engine.begin_edit()
    engine.accept_all()

    result = await engine.complete()

    assert result.ok
    assert len(result.persisted) == 2


# --- Flip ---


def test_flip_toggles_current_card(engine):
    engine.load_batch(_pairs(2))
    assert engine.is_flipped is False

    engine.flip()
    assert engine.is_flipped
    engine.flip()
    assert not engine.is_flipped


@pytest.mark.parametrize(
    "move",
    [
        lambda e: e.go_to(1),
        lambda e: e.next(),
        lambda e: e.previous(),
        lambda e: e.accept(),
        lambda e: e.delete(),
    ],
)
def test_leaving_a_card_shows_its_front_again(engine, move):
    engine.load_batch(_pairs(3))
    engine.go_to(1)
    engine.flip()

    move(engine)

    assert engine.is_flipped is False


def test_flip_on_empty_batch(engine):
    with pytest.raises(InvalidStateError):
        engine.flip()


def test_new_batch_starts_unflipped(engine):
    engine.load_batch(_pairs(1))
    engine.flip()

    engine.load_batch(_pairs(1))

    assert engine.is_flipped is False


# --- Commit ---


@pytest.mark.asyncio
async def test_complete_without_deck_stays_local(gateway, reporter):
    engine = BatchTriageEngine(gateway=gateway, reporter=reporter)
    engine.load_batch([("Q1", "A1")])
    engine.accept()

    with pytest.raises(InvalidStateError, match="no deck"):
        await engine.complete()

    gateway.create_card.assert_not_awaited()
    assert engine.card_statuses == [CardStatus.ACCEPTED]
    assert not engine.is_processing


@pytest.mark.asyncio
async def test_accept_delete_complete(engine, saving):
    """Accepting one card and deleting another commits only the accepted one."""
    engine.load_batch(_pairs(3))
    engine.accept()
    engine.delete()

    result = await engine.complete()

    assert result.ok
    assert [c.front for c in result.persisted] == ["f0"]
    saving.create_card.assert_awaited_once_with("f0", "b0", "deck-1", CardSource.AI)
    assert engine.is_empty


@pytest.mark.asyncio
async def test_complete_sends_edited_source(engine, saving):
    engine.load_batch(_pairs(2))
    engine.accept()
    engine.begin_edit()
    engine.update_draft("front", "rewritten")
    engine.save()

    result = await engine.complete()

    assert [c.source for c in result.persisted] == [CardSource.AI, CardSource.AI_EDITED]
    assert saving.create_card.await_args_list[1].args == (
        "rewritten",
        "b1",
        "deck-1",
        CardSource.AI_EDITED,
    )


@pytest.mark.asyncio
async def test_complete_without_accepted_cards(engine, gateway):
    engine.load_batch(_pairs(2))

    with pytest.raises(InvalidStateError):
        await engine.complete()
    gateway.create_card.assert_not_awaited()


@pytest.mark.asyncio
async def test_complete_with_open_edit(engine, gateway):
    engine.load_batch(_pairs(2))
    engine.accept()
    engine.begin_edit()

    with pytest.raises(InvalidStateError):
        await engine.complete()


@pytest.mark.asyncio
async def test_invalid_accepted_card_aborts_before_network(engine, gateway):
    engine.load_batch([{"front": "ok", "back": "fine"}, {"front": "What?", "back": "  "}])
    engine.accept_all()

    result = await engine.complete()

    assert not result.ok
    assert result.error.kind is ErrorKind.VALIDATION
    assert result.error.message == 'Card "What?..." has invalid back content'
    assert result.failed.front == "What?"
    gateway.create_card.assert_not_awaited()
    assert len(engine.cards) == 2


@pytest.mark.asyncio
async def test_partial_commit_then_retry_sends_only_the_rest(
    engine, gateway, reporter, persisted
):
    engine.load_batch(_pairs(3))
    engine.accept_all()
    gateway.create_card.side_effect = [
        persisted("srv-1", "f0", "b0"),
        ClientRequestError("Deck is full", 400),
    ]

    result = await engine.complete()

    assert result.is_partial
    assert result.error.kind is ErrorKind.CLIENT
    assert [c.id for c in result.persisted] == ["srv-1"]
    assert result.failed.front == "f1"
    assert [c.front for c in result.not_attempted] == ["f2"]
    assert engine.cards[0].identity == Persisted("srv-1")
    assert engine.error == result.error
    assert not engine.is_processing
    reporter.report.assert_awaited_once()
    assert reporter.report.await_args.args[0].path == "/generate"

    gateway.create_card.reset_mock()
    gateway.create_card.side_effect = [
        persisted("srv-2", "f1", "b1"),
        persisted("srv-3", "f2", "b2"),
    ]
    retry = await engine.complete()

    assert retry.ok
    assert [c.id for c in retry.persisted] == ["srv-1", "srv-2", "srv-3"]
    assert [c.args[0] for c in gateway.create_card.await_args_list] == ["f1", "f2"]
    assert engine.is_empty


@pytest.mark.asyncio
async def test_first_card_failure_is_not_partial(engine, gateway):
    engine.load_batch(_pairs(2))
    engine.accept_all()
    gateway.create_card.side_effect = TransientGatewayError("down", 503)

    result = await engine.complete()

    assert not result.ok
    assert not result.is_partial
    assert result.persisted == ()
    assert gateway.create_card.await_count == 1


@pytest.mark.asyncio
async def test_operations_rejected_while_committing(engine, gateway, persisted):
    engine.load_batch(_pairs(2))
    engine.accept()

    async def create(front, back, deck_id, source):
        assert engine.is_processing
        with pytest.raises(InvalidStateError):
            engine.accept()
        with pytest.raises(InvalidStateError):
            engine.delete_all()
        with pytest.raises(InvalidStateError):
            await engine.complete()
        return persisted("srv-1", front, back, source)

    gateway.create_card.side_effect = create

    result = await engine.complete()

    assert result.ok
    assert gateway.create_card.await_count == 1


@pytest.mark.asyncio
async def test_close_during_commit_stops_sequence(engine, gateway, persisted):
    engine.load_batch(_pairs(3))
    engine.accept_all()

    async def create_then_close(front, back, deck_id, source):
        engine.close()
        return persisted("srv-1", front, back, source)

    gateway.create_card.side_effect = create_then_close

    result = await engine.complete()

    assert result.error.kind is ErrorKind.CANCELLED
    assert [c.id for c in result.persisted] == ["srv-1"]
    assert gateway.create_card.await_count == 1
    assert engine.is_empty
    assert not engine.is_processing


# --- Generation batches ---


def _batch(status, cards=(), deck_id=None):
    return GenerationBatch(id="gen-1", status=status, cards=cards, deck_id=deck_id)


@pytest.mark.asyncio
async def test_generation_batch_polls_until_completed(engine, gateway, sleeps):
    gateway.get_generation_batch.side_effect = [
        _batch(GenerationStatus.PENDING),
        _batch(GenerationStatus.IN_PROGRESS),
        _batch(GenerationStatus.COMPLETED, cards=(("q1", "a1"), ("q2", "a2")), deck_id="deck-9"),
    ]

    error = await engine.load_generation_batch("gen-1")

    assert error is None
    assert sleeps == [0.5, 0.5]
    assert [c.front for c in engine.cards] == ["q1", "q2"]
    assert engine.deck_id == "deck-9"
    assert engine.generation_status is GenerationStatus.COMPLETED
    assert not engine.is_processing
    gateway.get_generation_batch.assert_awaited_with("gen-1")


@pytest.mark.asyncio
async def test_failed_generation_batch(engine, gateway):
    gateway.get_generation_batch.return_value = _batch(GenerationStatus.FAILED)

    error = await engine.load_generation_batch("gen-1")

    assert error.kind is ErrorKind.GENERATION_FAILED
    assert engine.error == error
    assert engine.is_empty


@pytest.mark.asyncio
async def test_generation_batch_timeout(engine, gateway, sleeps):
    gateway.get_generation_batch.return_value = _batch(GenerationStatus.IN_PROGRESS)

    error = await engine.load_generation_batch("gen-1")

    assert error.kind is ErrorKind.TRANSIENT
    assert gateway.get_generation_batch.await_count == 3
    assert sleeps == [0.5, 0.5]
    assert not engine.is_processing


@pytest.mark.asyncio
async def test_generation_batch_gateway_error_is_reported(engine, gateway, reporter, sleeps):
    gateway.get_generation_batch.side_effect = TransientGatewayError("down", 502)

    error = await engine.load_generation_batch("gen-1")

    assert error.kind is ErrorKind.TRANSIENT
    assert gateway.get_generation_batch.await_count == 2
    assert sleeps == [1.0]
    reporter.report.assert_awaited_once()
