"""flashdeck CLI: terminal review sessions and triage of generated cards."""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
import yaml

from flashdeck.application.batch_triage import BatchTriageEngine, CommitResult
from flashdeck.application.config import AppConfig, resolve_config
from flashdeck.application.review_session import ReviewSessionEngine
from flashdeck.application.validation import VALIDATION_MESSAGES
from flashdeck.domain.constants import MAX_QUALITY, MIN_QUALITY
from flashdeck.domain.errors import InvalidStateError
from flashdeck.domain.models import ErrorInfo, SessionState

# ---------------------------------------------------------------------------
# Root app
# ---------------------------------------------------------------------------

app = typer.Typer(
    help="flashdeck: review due flashcards and triage AI-generated ones.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(help="Manage flashdeck configuration.")
app.add_typer(config_app, name="config")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s:%(name)s:%(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)

_LOG_LEVELS = {0: logging.ERROR, 1: logging.WARNING, 2: logging.INFO}


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose", "-v", count=True, help="Increase verbosity. Repeat for more detail."
        ),
    ] = 1,
):
    """Global settings for flashdeck."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    logging.getLogger("flashdeck").setLevel(_LOG_LEVELS.get(verbose, logging.DEBUG))


def _resolve(ctx: typer.Context, **overrides: Any) -> AppConfig:
    return resolve_config(overrides)


def _print_error(error: ErrorInfo) -> None:
    typer.secho(f"Error: {error.message}", fg="red", err=True)
    if error.requires_reauthentication:
        typer.secho("Sign in again, then set FLASHDECK_API_TOKEN.", fg="yellow", err=True)


# ---------------------------------------------------------------------------
# review
# ---------------------------------------------------------------------------


@app.command()
def review(
    ctx: typer.Context,
    gateway_url: Annotated[str | None, typer.Option(help="Scheduling gateway base URL.")] = None,
):
    """[bold green]Review[/bold green] the cards that are due today."""
    from flashdeck.application.factory import build_review_engine, get_gateway

    config = _resolve(ctx, gateway_url=gateway_url)
    gateway = get_gateway(config)
    engine = build_review_engine(config, gateway=gateway)

    async def run():
        try:
            return await run_review_session(engine)
        finally:
            await gateway.close()

    code = asyncio.run(run())
    if code:
        raise typer.Exit(code)


async def run_review_session(engine: ReviewSessionEngine) -> int:
    """Drive a ReviewSessionEngine from the terminal. Returns an exit code."""
    state = await engine.load_queue()
    if state is SessionState.FAILED:
        _print_error(engine.error)
        return 1
    if state is SessionState.EMPTY:
        typer.secho("No cards due. Come back later!", fg="green")
        return 0

    while engine.state is SessionState.ACTIVE:
        view = engine.current_card
        progress = engine.progress
        typer.echo(f"\n[{progress.current_index + 1}/{progress.total_cards}] {view.card.front}")

        answer = typer.prompt("Enter to reveal, q to quit", default="", show_default=False)
        if answer.strip().lower() == "q":
            engine.exit_session()
            typer.echo("Session ended.")
            return 0

        engine.reveal()
        typer.secho(view.card.back, fg="cyan")

        while True:
            raw = typer.prompt(f"Quality {MIN_QUALITY}-{MAX_QUALITY}, q to quit").strip()
            if raw.lower() == "q":
                engine.exit_session()
                typer.echo("Session ended.")
                return 0
            if not raw.isdigit() or not MIN_QUALITY <= int(raw) <= MAX_QUALITY:
                typer.secho(f"Enter a number from {MIN_QUALITY} to {MAX_QUALITY}.", fg="yellow")
                continue

            result = await engine.submit_review(int(raw))
            if result.ok:
                break
            _print_error(result.error)
            if result.error.requires_reauthentication:
                return 1
            typer.echo("Try again.")

    progress = engine.progress
    typer.secho(
        f"\nSession complete: {progress.completed_count} cards, "
        f"average {progress.average_latency_ms / 1000:.1f}s per card.",
        fg="green",
    )
    return 0


# ---------------------------------------------------------------------------
# triage
# ---------------------------------------------------------------------------


def load_candidates(path: Path) -> list[dict[str, str]]:
    """Read a YAML or JSON list of {front, back} mappings."""
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("cards", data.get("flashcards"))
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a list of cards")

    cards = []
    for index, item in enumerate(data):
        if not isinstance(item, dict) or "front" not in item or "back" not in item:
            raise ValueError(f"card #{index + 1} in {path} needs 'front' and 'back'")
        cards.append({"front": str(item["front"]), "back": str(item["back"])})
    return cards


@app.command()
def triage(
    ctx: typer.Context,
    path: Annotated[
        Path | None,
        typer.Argument(help="YAML or JSON file with generated cards."),
    ] = None,
    batch_id: Annotated[
        str | None, typer.Option(help="Load a generation batch from the gateway instead.")
    ] = None,
    deck_id: Annotated[str | None, typer.Option(help="Deck that accepted cards go to.")] = None,
    gateway_url: Annotated[str | None, typer.Option(help="Scheduling gateway base URL.")] = None,
):
    """Accept, edit or delete AI-generated cards, then save the accepted ones."""
    from flashdeck.application.factory import build_triage_engine, get_gateway

    if (path is None) == (batch_id is None):
        typer.secho("Pass either a card file or --batch-id.", fg="red", err=True)
        raise typer.Exit(2)

    config = _resolve(ctx, gateway_url=gateway_url, deck_id=deck_id)
    gateway = get_gateway(config)
    engine = build_triage_engine(config, gateway=gateway)

    if path is not None:
        try:
            engine.load_batch(load_candidates(path))
        except (OSError, ValueError, yaml.YAMLError) as e:
            typer.secho(f"Could not read cards: {e}", fg="red", err=True)
            raise typer.Exit(1) from None

    async def run():
        try:
            if batch_id is not None:
                typer.echo(f"Waiting for generation batch {batch_id}...")
                error = await engine.load_generation_batch(batch_id)
                if error:
                    _print_error(error)
                    return 1
            return await run_triage(engine)
        finally:
            await gateway.close()

    code = asyncio.run(run())
    if code:
        raise typer.Exit(code)


_TRIAGE_HELP = (
    "[f]lip [a]ccept [e]dit [d]elete [n]ext [p]revious "
    "[A]ccept all [D]elete all [c]omplete [q]uit"
)


async def run_triage(engine: BatchTriageEngine) -> int:
    """Drive a BatchTriageEngine from the terminal. Returns an exit code."""
    while True:
        if engine.is_empty:
            typer.secho("Nothing left to review.", fg="yellow")
            return 0

        card = engine.current_card
        statuses = " ".join(s.value[0].upper() for s in engine.card_statuses)
        typer.echo(f"\n[{engine.current_step + 1}/{len(engine.cards)}] {statuses}")
        side = f"Back:  {card.back}" if engine.is_flipped else f"Front: {card.front}"
        typer.echo(f"{side}\nStatus: {card.status.value}")

        action = typer.prompt(_TRIAGE_HELP).strip()
        try:
            if action == "f":
                engine.flip()
            elif action == "a":
                engine.accept()
            elif action == "e":
                _edit_current(engine)
            elif action == "d":
                engine.delete()
            elif action == "n":
                engine.next()
            elif action == "p":
                engine.previous()
            elif action in ("A", "D"):
                if not engine.has_pending_cards:
                    typer.secho("No pending cards.", fg="yellow")
                elif action == "A" and typer.confirm("Accept all pending cards?"):
                    engine.accept_all()
                elif action == "D" and typer.confirm("Delete all pending cards?"):
                    engine.delete_all()
            elif action == "c":
                if not engine.has_accepted_cards:
                    typer.secho("Accept or edit at least one card first.", fg="yellow")
                    continue
                result = await engine.complete()
                _print_commit(result)
                if result.ok:
                    return 0
            elif action == "q":
                engine.close()
                return 0
            else:
                typer.secho("Unknown action.", fg="yellow")
        except InvalidStateError as e:
            typer.secho(str(e), fg="yellow")


def _edit_current(engine: BatchTriageEngine) -> None:
    engine.begin_edit()
    for side in ("front", "back"):
        text = typer.prompt(side.capitalize(), default=engine.draft[side])
        error = engine.update_draft(side, text)
        if error:
            typer.secho(f"{side}: {VALIDATION_MESSAGES[error]}", fg="yellow")
    if not engine.save():
        typer.secho("Edit discarded.", fg="yellow")
        engine.cancel_edit()


def _print_commit(result: CommitResult) -> None:
    for saved in result.persisted:
        typer.secho(f"saved {saved.id}: {saved.front}", fg="green")
    if result.ok:
        typer.secho(f"{len(result.persisted)} cards saved.", fg="green")
        return

    _print_error(result.error)
    if result.failed is not None:
        typer.echo(f"failed: {result.failed.front}")
    for card in result.not_attempted:
        typer.echo(f"not saved: {card.front}")
    if result.is_partial:
        typer.secho("Some cards were saved; completing again saves only the rest.", fg="yellow")


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(ctx: typer.Context):
    """Print the resolved configuration as JSON."""
    config = _resolve(ctx)
    data = config.model_dump(mode="json")
    if data.get("api_token"):
        data["api_token"] = "***"
    typer.echo(json.dumps(data, indent=2))


def main():
    app()


if __name__ == "__main__":
    main()
