"""Developer CLI for the coaching context engine.

Builds contexts against the configured database, classifies queries,
backfills methodology embeddings, and inspects the coaching corpus.
"""

import asyncio
import json
from dataclasses import asdict

import typer
from loguru import logger
from rich.console import Console
from rich.json import JSON
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from coach_context.config.settings import settings
from coach_context.core.logger import setup_logger
from coach_context.db.session import check_database_connection, get_session_factory, init_db
from coach_context.rag.classify import classify_query, infer_category, infer_workout_type
from coach_context.rag.embed.backfill import backfill_instruction_embeddings
from coach_context.rag.embed.embedder import EmbeddingClient
from coach_context.rag.pipeline import build_context_assembler
from coach_context.rag.retrieve.assembler import get_context_stats
from coach_context.rag.retrieve.coach_retriever import CoachPatternRetriever
from coach_context.rag.types import QueryType
from coach_context.stores.sql import SqlAthleteDataStore, SqlBookLibraryStore, SqlCoachLibraryStore

console = Console()

app = typer.Typer(
    name="coach-context",
    help="Coaching context engine CLI - build and inspect LLM coaching contexts",
    add_completion=False,
)


def _setup_logging(debug: bool = False) -> None:
    setup_logger(level="DEBUG" if debug else settings.log_level, events_file=settings.retrieval_events_log)


@app.command()
def context(
    athlete_id: str = typer.Argument(..., help="Athlete ID"),
    query: str = typer.Argument(..., help="User query"),
    query_type: QueryType | None = typer.Option(None, "--query-type", "-t", help="Skip classification and use this type"),
    budget: int | None = typer.Option(None, "--budget", "-b", help="Total token budget"),
    as_json: bool = typer.Option(False, "--json", help="Print stats and prompt as JSON"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
) -> None:
    """Assemble the three-layer context for an athlete and print it."""
    _setup_logging(debug)

    assembler = build_context_assembler(total_budget=budget)
    enhanced = asyncio.run(assembler.assemble(athlete_id, query, query_type=query_type))
    stats = get_context_stats(enhanced)

    if as_json:
        payload = {
            "query_type": enhanced.query_type.value,
            "stats": asdict(stats),
            "sources": [asdict(source) for source in enhanced.book_context.sources],
            "workouts_included": enhanced.coach_context.workouts_included,
            "combined_prompt": enhanced.combined_prompt,
        }
        console.print(JSON(json.dumps(payload, ensure_ascii=False)))
        return

    table = Table(title=f"Context for {athlete_id} ({enhanced.query_type.value})")
    table.add_column("Layer")
    table.add_column("Tokens", justify="right")
    for layer, tokens in stats.per_layer_tokens.items():
        table.add_row(layer, str(tokens))
    table.add_row("total", str(stats.total_tokens), style="bold")

    console.print(table)
    console.print(Panel(enhanced.combined_prompt, title="Combined prompt", border_style="cyan"))


@app.command()
def classify(query: str = typer.Argument(..., help="User query")) -> None:
    """Show the query type and workout hints inferred from a query."""
    console.print(f"Query type: [bold]{classify_query(query).value}[/bold]")
    console.print(f"Workout type: {infer_workout_type(query) or '-'}")
    console.print(f"Category: {infer_category(query) or '-'}")


@app.command()
def embed_instructions(
    batch_size: int | None = typer.Option(None, "--batch-size", help="Instructions per provider call"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
) -> None:
    """Generate embeddings for book instructions that do not have one."""
    _setup_logging(debug)

    report = asyncio.run(backfill_instruction_embeddings(EmbeddingClient(), batch_size=batch_size))

    if report.error:
        console.print(
            Panel(
                Text(f"Embedded {report.embedded}/{report.pending} instructions", style="bold red"),
                subtitle=report.error,
                border_style="red",
            )
        )
        raise typer.Exit(1)

    console.print(
        Panel(
            Text(f"Embedded {report.embedded}/{report.pending} instructions", style="bold green"),
            border_style="green",
        )
    )


@app.command()
def workout_patterns(
    athlete_id: str = typer.Argument(..., help="Athlete ID"),
    workout_name: str = typer.Argument(..., help="Workout name, or part of it"),
) -> None:
    """Show how an athlete has performed one of the previous coach's workouts."""
    factory = get_session_factory()
    athlete_store = SqlAthleteDataStore(factory)
    retriever = CoachPatternRetriever(SqlCoachLibraryStore(factory), history=athlete_store)

    analysis = asyncio.run(retriever.analyze_workout_patterns(athlete_id, workout_name))
    if analysis is None:
        console.print(f"[yellow]No runs named like '{workout_name}' for athlete {athlete_id}[/yellow]")
        raise typer.Exit(1)

    table = Table(title=f"{analysis.workout_name} ({analysis.occurrences} runs)")
    table.add_column("Metric")
    table.add_column("Value")
    table.add_row("Avg duration", f"{analysis.avg_duration_min} min")
    table.add_row("Avg distance", f"{analysis.avg_distance_km} km")
    table.add_row("Avg feeling", f"{analysis.avg_feeling}/10")
    table.add_row("Typical day", analysis.typical_day_of_week)
    table.add_row("Usually followed by", ", ".join(analysis.followed_by) or "-")
    console.print(table)


@app.command()
def schedules(
    race: str | None = typer.Option(None, "--race", help="Target race, e.g. marathon"),
    level: str | None = typer.Option(None, "--level", help="Athlete level"),
    weeks: int | None = typer.Option(None, "--weeks", help="Plan length in weeks (+/- 2)"),
    limit: int = typer.Option(3, "--limit", help="Maximum schedules"),
) -> None:
    """List book training schedules matching a plan request."""
    store = SqlBookLibraryStore(get_session_factory())
    found = asyncio.run(store.get_matching_schedules(target_race=race, level=level, duration_weeks=weeks, limit=limit))

    if not found:
        console.print("[yellow]No matching schedules[/yellow]")
        return

    table = Table(title="Book schedules")
    table.add_column("Plan")
    table.add_column("Book")
    table.add_column("Methodology")
    table.add_column("Race")
    table.add_column("Level")
    table.add_column("Weeks", justify="right")
    for schedule in found:
        table.add_row(
            schedule.plan_name,
            schedule.book_title,
            schedule.methodology,
            schedule.target_race or "-",
            schedule.level or "-",
            str(schedule.duration_weeks) if schedule.duration_weeks is not None else "-",
        )
    console.print(table)


async def _corpus_health(store: SqlBookLibraryStore) -> tuple[int, int, list[str]]:
    books, instructions, methodologies = await asyncio.gather(
        store.get_books_count(),
        store.get_instructions_count(),
        store.get_available_methodologies(),
    )
    return books, instructions, methodologies


@app.command()
def check_db(create_tables: bool = typer.Option(False, "--create-tables", help="Create missing tables")) -> None:
    """Verify the database connection and report the methodology corpus size."""
    try:
        if create_tables:
            init_db()
        check_database_connection()
        books, instructions, methodologies = asyncio.run(_corpus_health(SqlBookLibraryStore(get_session_factory())))
    except Exception as e:
        logger.error(f"Database check failed: {e}")
        console.print(Panel(Text("Database connection failed", style="bold red"), subtitle=str(e), border_style="red"))
        raise typer.Exit(1) from e

    console.print(Panel(Text("Database connection OK", style="bold green"), border_style="green"))

    table = Table(title="Methodology corpus")
    table.add_column("Item")
    table.add_column("Value")
    table.add_row("Books", str(books))
    table.add_row("Instructions", str(instructions))
    table.add_row("Methodologies", ", ".join(methodologies) or "-")
    console.print(table)


if __name__ == "__main__":
    app()
