"""
dck: terminal flashcards from markdown notes.

Commands:
- dck study     - Review the cards of a folder, files or a saved deck
- dck stats     - Show card statistics per document
- dck export    - Write session history metrics as CSV
- dck decks     - Manage saved decks
- dck folders   - Show or forget recently studied folders
- dck ai        - Configure AI answer evaluation
"""
from __future__ import annotations

import asyncio
import random
import sys
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from config import Settings, get_settings
from dck.content.loader import DocumentLoader
from dck.core.preferences import PreferencesStore, format_timestamp
from dck.delivery.session import SessionMode, SessionPhase, SortOrder, StudySession
from dck.delivery.state_store import CardStore
from dck.integrations import (
    AnswerEvaluator,
    Evaluation,
    ProviderConfig,
    available_providers,
    extract_keywords,
    find_matching_keywords,
)
from dck.study.metrics import (
    aggregate,
    calculate_overall_metrics,
    document_metrics,
    generate_sessions_csv,
    generate_summary_csv,
    load_session_history,
)
from dck.study.retention_engine import FSRSScheduler, Rating, utcnow


# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="dck",
    help="dck: spaced repetition flashcards inside your markdown notes",
    no_args_is_help=True,
)
decks_app = typer.Typer(help="Manage saved decks", no_args_is_help=True)
ai_app = typer.Typer(help="Configure AI answer evaluation", no_args_is_help=True)
app.add_typer(decks_app, name="decks")
app.add_typer(ai_app, name="ai")

console = Console()

RATING_STYLES = {
    Rating.AGAIN: "bold red",
    Rating.HARD: "bold yellow",
    Rating.GOOD: "bold green",
    Rating.EASY: "bold cyan",
}


def configure_logging(settings: Settings) -> None:
    """Route loguru to stderr at the configured level (plus an optional file)."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="1 MB", retention=5)


# =============================================================================
# Context Builder (Dependency Injection)
# =============================================================================


class CLIContext:
    """
    Dependency container for CLI commands.

    Builds the loader, card store, scheduler and preferences from settings.
    The evaluator is created on demand and owned by the caller.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.loader = DocumentLoader()
        self.store = CardStore(loader=self.loader, sidecar_suffix=self.settings.sidecar_suffix)
        self.scheduler = FSRSScheduler(
            request_retention=self.settings.fsrs_request_retention,
            maximum_interval=self.settings.fsrs_maximum_interval,
        )
        self.preferences = PreferencesStore(self.settings.preferences_path)
        self.preferences.load()

    def provider_config(self) -> ProviderConfig:
        """Provider settings: saved preferences first, then environment."""
        ai = self.preferences.ai
        return ProviderConfig(
            provider_id=ai.provider_id if ai.enabled else self.settings.ai_provider,
            api_key=ai.api_key if ai.enabled and ai.api_key else self.settings.anthropic_api_key,
            model=self.settings.ai_model,
            max_tokens=self.settings.ai_max_tokens,
            timeout_seconds=self.settings.ai_timeout_seconds,
            retry_attempts=self.settings.ai_retry_attempts,
        )

    def build_evaluator(self) -> AnswerEvaluator | None:
        if not (self.preferences.is_ai_configured() or self.settings.has_ai_configured()):
            return None
        return AnswerEvaluator.from_config(self.provider_config())

    def resolve_documents(self, targets: list[Path]) -> tuple[list[Path], Path | None]:
        """
        Expand folders into their documents.

        Returns:
            (documents, study folder used for the session archive)
        """
        documents: list[Path] = []
        folder: Path | None = None
        for target in targets:
            if target.is_dir():
                folder = folder or target
                documents.extend(ref.path for ref in self.loader.list_documents(target))
            elif target.is_file():
                folder = folder or target.parent
                documents.append(target)
            else:
                console.print(f"[yellow]Not found: {target}[/yellow]")
        return documents, folder


# =============================================================================
# Display Helpers
# =============================================================================


def display_question(card, position: int, total: int) -> None:
    header = f"Card {position}/{total}  |  {card.source_file}"
    console.print(Panel(card.question.text, title=header, title_align="left", border_style="cyan", padding=(1, 2)))


def display_answer(card, user_answer: str) -> None:
    console.print(Panel(Markdown(card.question.answer), title="Expected Answer", border_style="green", padding=(1, 2)))

    keywords = extract_keywords(card.question.answer)
    if keywords and user_answer:
        match = find_matching_keywords(keywords, user_answer)
        found = ", ".join(match.found) or "-"
        missing = ", ".join(match.missing) or "-"
        console.print(f"[dim]Keywords ({match.score}%):[/dim] [green]{found}[/green] | [red]{missing}[/red]")


def display_evaluation(evaluation: Evaluation) -> None:
    lines = [
        f"[bold]Score:[/bold] {evaluation.overall_score:g}%   "
        f"[bold]Suggested:[/bold] {Rating(evaluation.suggested_rating).name.title()}",
        f"Accuracy: {evaluation.accuracy.level.replace('_', ' ')}",
        f"Completeness: {evaluation.completeness.level.replace('_', ' ')}",
    ]
    lines += [f"[green]+[/green] {s}" for s in evaluation.strengths]
    lines += [f"[yellow]-[/yellow] {i}" for i in evaluation.improvements]
    console.print(Panel("\n".join(lines), title="AI Evaluation", border_style="magenta"))


def _display_session_summary(session: StudySession, transcript: Path | None) -> None:
    summary = session.summary
    table = Table(show_header=False, box=None)
    table.add_column("Metric", style="dim")
    table.add_column("Value", style="bold")
    table.add_row("Cards reviewed", str(summary.cards_reviewed))
    table.add_row("Duration", f"{summary.duration_seconds}s")
    table.add_row("Accuracy", f"{summary.accuracy * 100:.0f}%")
    for rating in Rating:
        name = rating.name.lower()
        table.add_row(rating.name.title(), f"[{RATING_STYLES[rating]}]{summary.ratings[name]}[/]")
    if transcript:
        table.add_row("Transcript", str(transcript))
    if session.persistence_failures:
        table.add_row("Unsaved cards", f"[red]{len(session.persistence_failures)}[/red]")

    console.print()
    console.print(Panel(table, title="[bold]Session Complete[/bold]", border_style="green"))


# =============================================================================
# Commands
# =============================================================================


def _run_session(session: StudySession) -> None:
    """
    Interactive review loop.

    Evaluations run on one private event loop so the evaluator's HTTP client
    is reused across cards; prompts stay synchronous.
    """
    loop = asyncio.new_event_loop()
    try:
        while session.phase == SessionPhase.REVIEWING:
            card = session.current_card
            rated, total = session.progress
            console.print()
            display_question(card, rated + 1, total)

            user_answer = Prompt.ask("[dim]Your answer (Enter to reveal)[/dim]", default="", show_default=False)

            evaluation = None
            if session.evaluator and user_answer.strip():
                with console.status("Evaluating answer..."):
                    evaluation = loop.run_until_complete(session.evaluate_answer(user_answer))
                if evaluation:
                    display_evaluation(evaluation)
                else:
                    console.print("[yellow]AI evaluation unavailable for this answer.[/yellow]")

            display_answer(card, user_answer)

            choice = Prompt.ask(
                "Rate [red]1[/red] again  [yellow]2[/yellow] hard  [green]3[/green] good  "
                "[cyan]4[/cyan] easy  (s)kip  (u)ndo  (q)uit",
                choices=["1", "2", "3", "4", "s", "u", "q"],
                default=str(evaluation.suggested_rating) if evaluation else "3",
            )
            if choice == "s":
                session.skip()
            elif choice == "u":
                if not session.undo():
                    console.print("[dim]Nothing to undo[/dim]")
            elif choice == "q":
                session.end()
            else:
                outcome = session.rate(int(choice), user_answer=user_answer, evaluation=evaluation)
                if not outcome.persisted:
                    console.print("[red]Could not save this card; continuing.[/red]")
    except (KeyboardInterrupt, EOFError):
        console.print("\n\n[yellow]Session interrupted.[/yellow]")
        session.end()
    finally:
        if session.evaluator:
            loop.run_until_complete(session.evaluator.close())
        loop.close()


@app.command()
def study(
    targets: list[Path] = typer.Argument(None, help="Folders or markdown files"),
    deck: Optional[str] = typer.Option(None, "--deck", "-d", help="Study a saved deck by name"),
    mode: Optional[SessionMode] = typer.Option(None, "--mode", "-m", help="review = due + new, study = all"),
    order: Optional[SortOrder] = typer.Option(None, "--order", "-o", help="Card ordering"),
    use_ai: bool = typer.Option(True, "--ai/--no-ai", help="Evaluate typed answers with AI when configured"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Random seed for the random order"),
) -> None:
    """Start an interactive review session."""
    ctx = CLIContext()

    if deck:
        saved = ctx.preferences.find_deck(deck)
        if saved is None:
            console.print(f"[red]No saved deck named '{deck}'[/red]")
            raise typer.Exit(1)
        ctx.preferences.touch_deck(saved.id)
        targets = [Path(p) for p in saved.file_paths]
    elif not targets:
        last = ctx.preferences.last_folder
        if last is None:
            console.print("[red]Give a folder or files to study.[/red]")
            raise typer.Exit(1)
        targets = [Path(last.path)]

    documents, folder = ctx.resolve_documents(targets)
    if not documents:
        console.print("[red]No markdown documents found.[/red]")
        raise typer.Exit(1)
    if folder is not None:
        ctx.preferences.add_folder(str(folder))
    ctx.preferences.save()

    session = StudySession(
        ctx.store,
        documents,
        mode=mode or ctx.settings.default_session_mode,
        order=order or ctx.settings.default_session_order,
        scheduler=ctx.scheduler,
        evaluator=ctx.build_evaluator() if use_ai else None,
        rng=random.Random(seed),
    )
    total = session.start()

    console.print(f"\n[bold cyan]dck[/bold cyan] - {len(documents)} documents, [bold]{total}[/bold] cards")
    if total == 0:
        console.print("[green]Nothing due for review. All caught up![/green]")
        raise typer.Exit(0)

    if session.evaluator:
        console.print(f"[dim]AI evaluation: {session.evaluator.provider_name}[/dim]")

    _run_session(session)

    transcript = session.save_transcript(folder, sessions_dir_name=ctx.settings.sessions_dir_name) if folder else None
    _display_session_summary(session, transcript)


@app.command()
def stats(
    targets: list[Path] = typer.Argument(..., help="Folders or markdown files"),
) -> None:
    """Show card statistics per document."""
    ctx = CLIContext()
    documents, _ = ctx.resolve_documents(targets)
    now = utcnow()

    per_document = []
    for document in documents:
        try:
            per_document.append(document_metrics(document.name, ctx.store.load_document(document, now), now))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping {document}: {e}")
    overall = aggregate(per_document)

    table = Table(title="Cards by Document")
    table.add_column("Document")
    table.add_column("Total", justify="right")
    table.add_column("New", justify="right")
    table.add_column("Learning", justify="right")
    table.add_column("Review", justify="right")
    table.add_column("Due", justify="right")
    table.add_column("Avg Difficulty", justify="right")
    for doc in overall.documents:
        table.add_row(
            doc.name,
            str(doc.total_cards),
            str(doc.new_cards),
            str(doc.learning_cards),
            str(doc.review_cards),
            str(doc.due_count),
            f"{doc.avg_difficulty:.1f}",
        )
    console.print(table)

    summary = Table(show_header=False, box=None)
    summary.add_column("Metric", style="dim")
    summary.add_column("Value", style="bold")
    summary.add_row("Total cards", str(overall.total_cards))
    summary.add_row("Total reviews", str(overall.total_reviews))
    summary.add_row("Due today", str(overall.due_today))
    summary.add_row("Due this week", str(overall.due_this_week))
    summary.add_row("Retention rate", f"{overall.retention_rate:.0f}%")
    console.print(summary)


@app.command()
def export(
    folder: Path = typer.Argument(..., help="Study folder containing a .sessions archive"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Directory for the CSV files"),
) -> None:
    """Export session history metrics as CSV."""
    ctx = CLIContext()
    sessions = load_session_history(folder, ctx.settings.sessions_dir_name)
    if not sessions:
        console.print("[yellow]No sessions found.[/yellow]")
        raise typer.Exit(0)

    output = output or folder
    summary_path = ctx.loader.write_text(output / "metrics_summary.csv", generate_summary_csv(calculate_overall_metrics(sessions)))
    sessions_path = ctx.loader.write_text(output / "metrics_sessions.csv", generate_sessions_csv(sessions))
    console.print(f"[green]Exported {len(sessions)} sessions[/green]")
    console.print(f"  {summary_path}\n  {sessions_path}")


@app.command()
def folders(
    remove: Optional[str] = typer.Option(None, "--remove", help="Forget one folder by path"),
    clear: bool = typer.Option(False, "--clear", help="Forget all recent folders"),
) -> None:
    """Show (or forget) recently studied folders."""
    ctx = CLIContext()
    if clear:
        ctx.preferences.clear_folders()
        ctx.preferences.save()
        console.print("[green]Recent folders cleared[/green]")
        return
    if remove:
        ctx.preferences.remove_folder(remove)
        ctx.preferences.save()
        console.print(f"[green]Forgot {remove}[/green]")

    recent = ctx.preferences.recent_folders
    if not recent:
        console.print("[dim]No recent folders.[/dim]")
        return

    table = Table()
    table.add_column("Folder")
    table.add_column("Path", style="dim")
    table.add_column("Last Opened")
    for entry in recent:
        table.add_row(entry.name, entry.path, format_timestamp(entry.last_accessed))
    console.print(table)


@decks_app.command("list")
def decks_list() -> None:
    """List saved decks."""
    ctx = CLIContext()
    saved = ctx.preferences.saved_decks
    if not saved:
        console.print("[dim]No saved decks.[/dim]")
        return

    table = Table()
    table.add_column("Name")
    table.add_column("Files", justify="right")
    table.add_column("Last Used")
    for deck in saved:
        table.add_row(deck.name, str(len(deck.file_paths)), format_timestamp(deck.last_used))
    console.print(table)


@decks_app.command("save")
def decks_save(
    name: str = typer.Argument(..., help="Deck name"),
    targets: list[Path] = typer.Argument(..., help="Folders or markdown files"),
) -> None:
    """Save a group of documents as a deck."""
    ctx = CLIContext()
    documents, _ = ctx.resolve_documents(targets)
    if not documents:
        console.print("[red]No markdown documents found.[/red]")
        raise typer.Exit(1)

    deck = ctx.preferences.save_deck(name, [str(d.resolve()) for d in documents])
    ctx.preferences.save()
    console.print(f"[green]Saved deck '{deck.name}' with {len(deck.file_paths)} files[/green]")


@decks_app.command("delete")
def decks_delete(name: str = typer.Argument(..., help="Deck name")) -> None:
    """Delete a saved deck."""
    ctx = CLIContext()
    deck = ctx.preferences.find_deck(name)
    if deck is None:
        console.print(f"[red]No saved deck named '{name}'[/red]")
        raise typer.Exit(1)
    ctx.preferences.delete_deck(deck.id)
    ctx.preferences.save()
    console.print(f"[green]Deleted deck '{name}'[/green]")


@decks_app.command("rename")
def decks_rename(
    name: str = typer.Argument(..., help="Current deck name"),
    new_name: str = typer.Argument(..., help="New deck name"),
) -> None:
    """Rename a saved deck."""
    ctx = CLIContext()
    deck = ctx.preferences.find_deck(name)
    if deck is None:
        console.print(f"[red]No saved deck named '{name}'[/red]")
        raise typer.Exit(1)
    ctx.preferences.rename_deck(deck.id, new_name)
    ctx.preferences.save()
    console.print(f"[green]Renamed deck '{name}' to '{new_name}'[/green]")


@decks_app.command("clear")
def decks_clear() -> None:
    """Delete every saved deck."""
    ctx = CLIContext()
    if not Confirm.ask("Delete all saved decks?", default=False):
        raise typer.Exit(0)
    ctx.preferences.clear_decks()
    ctx.preferences.save()
    console.print("[green]All saved decks deleted[/green]")


@ai_app.command("set")
def ai_set(
    provider: str = typer.Option("claude", "--provider", "-p", help="Provider id"),
    api_key: str = typer.Option(..., "--api-key", prompt=True, hide_input=True),
) -> None:
    """Save and enable an AI provider."""
    if provider not in available_providers():
        console.print(f"[red]Unknown provider '{provider}'. Available: {', '.join(available_providers())}[/red]")
        raise typer.Exit(1)

    ctx = CLIContext()
    ctx.preferences.set_ai_provider(provider, api_key, enabled=True)
    ctx.preferences.save()
    console.print(f"[green]AI evaluation enabled with '{provider}'[/green]")


@ai_app.command("clear")
def ai_clear() -> None:
    """Disable AI evaluation."""
    ctx = CLIContext()
    if not Confirm.ask("Remove the saved AI provider?", default=False):
        raise typer.Exit(0)
    ctx.preferences.clear_ai_provider()
    ctx.preferences.save()
    console.print("[green]AI evaluation disabled[/green]")


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """CLI entry point."""
    configure_logging(get_settings())
    app()


if __name__ == "__main__":
    main()
