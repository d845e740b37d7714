"""
Review Insights Engine - CLI Entry Point.
Production-grade CLI using Click and Rich.
"""

import sys
import asyncio
import logging
from functools import wraps
from pathlib import Path

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler

from review_insights.config.settings import get_settings
from review_insights.models.schemas import Competitor, Product
from review_insights.persistence.store import BrandOwnershipError
from review_insights.pipeline.orchestrator import (
    CATALOGUE_TYPES,
    AnalysisOrchestrator,
    OwnershipError,
    PipelineError,
)
from review_insights.services.vector_index import VectorIndexError
from review_insights.utils.logger import setup_logging
from review_insights.utils.review_loader import read_reviews_csv

# Initialize Rich Console
console = Console()

# =============================================================================
# Helper Functions
# =============================================================================

def async_command(f):
    """Decorator to run async click commands."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper

def setup_logger(verbose: bool):
    """Configure logging based on verbosity."""
    level = "DEBUG" if verbose else "WARNING"
    setup_logging(level=level, json_format=False)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )
    # Silence third-party libs
    logging.getLogger("httpx").setLevel(logging.WARNING)


def parse_competitors(ctx, param, values) -> list[tuple[str, str]]:
    """Click callback turning repeated ``ID=NAME`` options into pairs."""
    competitors = []
    for value in values:
        competitor_id, sep, name = value.partition("=")
        if not sep or not competitor_id.strip() or not name.strip():
            raise click.BadParameter(f"expected ID=NAME, got {value!r}")
        competitors.append((competitor_id.strip(), name.strip()))
    return competitors


async def load_owned_product(orchestrator: AnalysisOrchestrator, product_id: str, user_id: str) -> Product:
    """Load a product for CLI maintenance commands, exiting when it is not the user's."""
    product = await orchestrator.store.get_product(product_id)
    if product is None or product.user_id != user_id:
        console.print("[bold red]Error:[/bold red] Product not found")
        sys.exit(1)
    return product

# =============================================================================
# CLI Group
# =============================================================================

@click.group()
@click.version_option(version="1.0.0")
def cli():
    """Review Insights Engine"""
    pass

# =============================================================================
# Commands
# =============================================================================

@cli.command()
@click.argument('product_id')
@click.option('--user', 'user_id', required=True, help='Owner of the product')
@click.option('--pacing', type=float, default=None, help='Seconds between analyses')
@click.option('--verbose', is_flag=True, help='Detailed logging')
@async_command
async def run(product_id: str, user_id: str, pacing: float | None, verbose: bool):
    """
    Run every analysis for a product.

    PRODUCT_ID: The product to analyze
    """
    setup_logger(verbose)

    console.print(Panel.fit(f"[bold blue]Review Insights Analysis[/bold blue]\nProduct: [cyan]{product_id}[/cyan]"))

    start_time = asyncio.get_event_loop().time()

    try:
        settings = get_settings()

        async with AnalysisOrchestrator(settings=settings, pacing_seconds=pacing) as orchestrator:

            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console
            ) as progress:

                task = progress.add_task("[cyan]Running analyses...", total=len(CATALOGUE_TYPES))

                def update_progress(message, done, total):
                    progress.update(task, completed=done, description=f"[cyan]{message}")

                orchestrator.progress_callback = update_progress

                summary = await orchestrator.run_all(product_id, user_id)

                progress.update(task, description="[green]Analyses finished")

        duration = asyncio.get_event_loop().time() - start_time

        table = Table(title="Analysis Summary", show_header=False)
        table.add_row("Status", "[green]Success[/green]" if summary.success else "[red]Failed[/red]")
        table.add_row("Completed", ", ".join(summary.completed_types) or "-")
        table.add_row("Duration", f"{duration:.2f}s")
        console.print(table)

        for error in summary.errors:
            console.print(f"[yellow]![/yellow] {error}")

        if not summary.success:
            sys.exit(1)

    except PipelineError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {str(e)}")
        if verbose:
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.argument('product_id')
@click.argument('analysis_type', type=click.Choice(list(CATALOGUE_TYPES)))
@click.option('--user', 'user_id', required=True, help='Owner of the product')
@click.option('--verbose', is_flag=True, help='Detailed logging')
@async_command
async def retry(product_id: str, analysis_type: str, user_id: str, verbose: bool):
    """
    Re-run a single analysis type for a product.
    """
    setup_logger(verbose)

    try:
        async with AnalysisOrchestrator(settings=get_settings()) as orchestrator:
            with console.status(f"[cyan]Re-running {analysis_type}..."):
                result = await orchestrator.run_one(product_id, analysis_type, user_id)
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {str(e)}")
        sys.exit(1)

    if result.success:
        console.print(f"[green]✓[/green] {analysis_type} completed.")
    else:
        console.print(f"[bold red]✗ {analysis_type} failed:[/bold red] {result.error}")
        sys.exit(1)


@cli.command()
@click.argument('product_id')
@click.option('--user', 'user_id', required=True, help='Owner of the product')
@async_command
async def status(product_id: str, user_id: str):
    """Show analysis progress for a product."""
    setup_logger(False)

    try:
        async with AnalysisOrchestrator(settings=get_settings()) as orchestrator:
            report = await orchestrator.get_status(product_id, user_id)
    except PipelineError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {str(e)}")
        sys.exit(1)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Analysis")
    table.add_column("Status")
    table.add_column("Error")

    colours = {"completed": "green", "failed": "red", "processing": "yellow"}
    for entry in report.analyses:
        colour = colours.get(entry.status, "white")
        table.add_row(entry.type, f"[{colour}]{entry.status}[/{colour}]", entry.error or "")

    console.print(table)
    console.print(
        f"Completed [green]{len(report.completed_types)}[/green] of "
        f"[cyan]{report.total_expected_types}[/cyan] expected"
        + (" [yellow](processing)[/yellow]" if report.is_processing else "")
    )


@cli.command('add-product')
@click.argument('product_id')
@click.option('--name', required=True, help='Product name')
@click.option('--brand', 'brand_id', required=True, help='Brand the product belongs to')
@click.option('--brand-name', default="", help='Display name of the brand')
@click.option('--user', 'user_id', required=True, help='Owner of the brand')
@click.option(
    '--competitor', 'competitors', multiple=True, callback=parse_competitors,
    help='Competitor as ID=NAME (repeatable)',
)
@async_command
async def add_product(
    product_id: str,
    name: str,
    brand_id: str,
    brand_name: str,
    user_id: str,
    competitors: list[tuple[str, str]],
):
    """
    Create or update a product and its competitors.

    PRODUCT_ID: The product to register
    """
    setup_logger(False)

    product = Product(
        id=product_id,
        name=name,
        brand_id=brand_id,
        user_id=user_id,
        competitors=[
            Competitor(id=competitor_id, name=competitor_name, product_id=product_id)
            for competitor_id, competitor_name in competitors
        ],
    )

    try:
        async with AnalysisOrchestrator(settings=get_settings()) as orchestrator:
            existing = await orchestrator.store.get_product(product_id)
            if existing is not None and existing.user_id != user_id:
                console.print(f"[bold red]Error:[/bold red] {OwnershipError(product_id, user_id).message}")
                sys.exit(1)
            await orchestrator.store.add_product(product, brand_name=brand_name)
    except BrandOwnershipError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    console.print(
        f"[green]✓[/green] Saved {product_id} with {len(product.competitors)} competitor(s) "
        f"in [cyan]{product.namespace}[/cyan]."
    )


@cli.command()
@click.argument('product_id')
@click.argument('file_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--user', 'user_id', required=True, help='Owner of the product')
@click.option('--version', 'analysis_version', default="v1", show_default=True, help='Ingestion version tag')
@click.option('--replace', is_flag=True, help="Delete the product's stored reviews first")
@async_command
async def ingest(product_id: str, file_path: str, user_id: str, analysis_version: str, replace: bool):
    """
    Embed and store reviews for a product from a CSV file.

    FILE_PATH: CSV with a text column and optional rating, date, competitor_id.
    Re-ingesting the same rows overwrites them instead of adding duplicates.
    """
    setup_logger(False)

    try:
        async with AnalysisOrchestrator(settings=get_settings()) as orchestrator:
            product = await load_owned_product(orchestrator, product_id, user_id)

            reviews = read_reviews_csv(
                Path(file_path), product.id, product.brand_id,
                analysis_version=analysis_version, product_name=product.name,
            )
            if not reviews:
                console.print("[red]No reviews found in file.[/red]")
                sys.exit(1)

            index = orchestrator.selector.index
            if replace:
                deleted = await index.delete_product_reviews(product.namespace, product.id)
                console.print(f"[yellow]Removed {deleted} stored reviews.[/yellow]")

            with console.status(f"[cyan]Embedding {len(reviews)} reviews..."):
                stored = await index.store_reviews(
                    product.namespace, reviews, orchestrator.selector.embedder,
                )
    except (ValueError, OSError, VectorIndexError) as e:
        console.print(f"[bold red]Ingestion Failed:[/bold red] {e}")
        sys.exit(1)

    console.print(f"[green]✓[/green] Stored {len(stored)} reviews in [cyan]{product.namespace}[/cyan].")


@cli.command()
@click.argument('product_id')
@click.option('--user', 'user_id', required=True, help='Owner of the product')
@async_command
async def stats(product_id: str, user_id: str):
    """Show how many reviews are stored for a product's brand."""
    setup_logger(False)

    try:
        async with AnalysisOrchestrator(settings=get_settings()) as orchestrator:
            product = await load_owned_product(orchestrator, product_id, user_id)
            report = await orchestrator.selector.index.namespace_stats(product.namespace)
    except VectorIndexError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    if not report.exists:
        console.print(f"No reviews stored in [cyan]{report.namespace}[/cyan] yet.")
        return

    table = Table(title=f"{report.namespace}: {report.review_count} reviews", show_header=True, header_style="bold magenta")
    table.add_column("Breakdown")
    table.add_column("Key")
    table.add_column("Reviews", justify="right")
    for key, count in sorted(report.product_breakdown.items()):
        table.add_row("product", key, str(count))
    for key, count in sorted(report.version_breakdown.items()):
        table.add_row("version", key, str(count))
    console.print(table)


def validate_setup():
    """Check API keys and environment configuration."""
    console.print("[bold]Validating Setup...[/bold]")

    try:
        settings = get_settings()

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Check")
        table.add_column("Status")
        table.add_column("Details")

        # Check Anthropic
        key = settings.anthropic_api_key.get_secret_value()
        status = "[green]Pass[/green]" if key.startswith("sk-") else "[red]Fail[/red]"
        table.add_row("Anthropic API Key", status, f"configured ({len(key)} chars)")

        # Check embeddings
        has_embeddings = settings.has_embedding_provider()
        status = "[green]Pass[/green]" if has_embeddings else "[red]Fail[/red]"
        table.add_row("OpenAI API Key", status, settings.embedding_model if has_embeddings else "None")

        # Configuration
        table.add_row("Vector Index", "[blue]Info[/blue]", settings.get_vector_backend())
        table.add_row("Database", "[blue]Info[/blue]", settings.database_url)
        table.add_row("Environment", "[blue]Info[/blue]", settings.app_env)

        console.print(table)

        if not has_embeddings:
            console.print("\n[yellow]Warning: No OpenAI API key configured. Review selection needs embeddings.[/yellow]")
            sys.exit(1)

    except Exception as e:
        console.print(f"[bold red]Configuration Error:[/bold red] {e}")
        sys.exit(1)

if __name__ == "__main__":
    cli()
