"""Main entry point for Letterbox daemon - just wiring, no logic."""

import asyncio
import json
import re
import signal
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

import typer
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from .config import Config
from .database import init_db
from .defaults import default_config_dir, ensure_config, seed_default_feeds
from .digest import DigestSynthesizer
from .errors import InvalidPayload, SummarizationUnavailable
from .fetchers import RSSFetcher
from .inbound import extract_raw_email
from .ingestion import IngestionPipeline
from .llm_validator import check_providers
from .models import Digest, SummarizedRecord
from .notifier import SlackNotifier
from .observability import get_event_log
from .providers import ProviderChain, build_providers
from .storage import Storage, init_store, shutdown_store
from .summarizer import NewsletterSummarizer
from .worker import SummaryWorker

# Load environment variables from ~/.config/letterbox/.env
dotenv_path = default_config_dir() / ".env"
if dotenv_path.exists():
    load_dotenv(dotenv_path)

console = Console()
app = typer.Typer(help="Letterbox newsletter ingestion and summarization")
feeds_app = typer.Typer(help="Manage RSS feed sources")
app.add_typer(feeds_app, name="feeds")

scheduler = None  # Global for signal handler


def load_config() -> Config:
    try:
        return Config.from_file()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]❌ Configuration error: {e}[/bold red]")
        raise typer.Exit(1)


def open_store(config: Config) -> Storage:
    try:
        return init_store(config.db_path)
    except FileNotFoundError as e:
        console.print(f"[bold red]❌ {e}[/bold red]")
        console.print("[yellow]💡 Run 'letterbox init-db' first[/yellow]")
        raise typer.Exit(1)


def build_summarizer(
    config: Config, storage: Storage
) -> Tuple[ProviderChain, NewsletterSummarizer]:
    chain = build_providers(config.providers)
    notifier = None
    if config.slack_configured:
        notifier = SlackNotifier(config.slack_bot_token, config.slack_channel)
    summarizer = NewsletterSummarizer(
        storage,
        chain,
        notifier=notifier,
        max_body_chars=config.max_body_chars,
    )
    return chain, summarizer


def build_pipeline(
    config: Config, storage: Storage, worker: Optional[SummaryWorker] = None
) -> IngestionPipeline:
    return IngestionPipeline(
        storage,
        fetcher=RSSFetcher(max_items=config.max_items_per_feed),
        worker=worker,
        console=console,
        chat_channel=config.slack_channel if config.slack_configured else None,
        bot_marker=config.bot_marker,
    )


def extract_name_from_url(url: str) -> str:
    """Readable feed name from a URL: https://blog.bytebytego.com/feed -> Bytebytego"""
    host = re.sub(r"^https?://", "", url).split("/")[0].split("?")[0]
    host = re.sub(r"^(www|blog|newsletter)\.", "", host)
    return host.split(".")[0].title() if "." in host else host


def print_digest(digest: Digest) -> None:
    console.print(
        f"\n[bold]Digest {digest.date_range_label}[/bold] "
        f"({digest.total_newsletters} newsletters)"
    )
    for theme in digest.themes:
        console.print(f"  [cyan]{theme.theme}[/cyan]: {theme.description}")
        for subject in theme.related_subjects:
            console.print(f"    [dim]- {subject}[/dim]")
    if digest.highlights:
        console.print("[bold]Highlights[/bold]")
        for highlight in digest.highlights:
            console.print(f"  • {highlight}")
    if digest.action_items:
        console.print("[bold]Action items[/bold]")
        for action in digest.action_items:
            console.print(f"  → {action}")


@app.command("init-db")
def init_db_command(
    seed: bool = typer.Option(True, "--seed/--no-seed", help="Seed default feeds"),
) -> None:
    """Create config and database, and seed the default feeds."""
    ensure_config()
    config = load_config()
    db_path = init_db(config.db_path)
    console.print(f"[green]✅ Database ready at {db_path}[/green]")

    if seed:
        with Storage(db_path) as storage:
            count = seed_default_feeds(storage, config.feeds)
        console.print(f"[green]✅ {count} feeds registered[/green]")


@app.command()
def collect() -> None:
    """Run one RSS collection pass and exit."""
    config = load_config()
    storage = open_store(config)
    try:
        stats = build_pipeline(config, storage).collect_feeds()
    finally:
        shutdown_store()

    if stats["errors"] and stats["feeds_processed"] == 0:
        raise typer.Exit(1)


@app.command()
def ingest(
    path: Path = typer.Argument(..., help="Raw email file, or - for stdin"),
    external_id: Optional[str] = typer.Option(
        None, "--external-id", help="Source id overriding the Message-ID"
    ),
    content_type: str = typer.Option(
        "text/plain", "--content-type", help="Payload type (application/json, multipart/form-data, ...)"
    ),
    summarize: bool = typer.Option(False, "--summarize", help="Summarize right away"),
) -> None:
    """Ingest one email payload."""
    config = load_config()
    body = sys.stdin.buffer.read() if str(path) == "-" else path.read_bytes()

    try:
        raw, payload_id = extract_raw_email(body, content_type)
    except InvalidPayload as e:
        console.print(f"[bold red]❌ {e}[/bold red]")
        raise typer.Exit(1)

    storage = open_store(config)
    try:
        result = build_pipeline(config, storage).ingest_raw(
            raw, external_id=external_id or payload_id
        )
        if not result.is_new:
            console.print(f"[yellow]Already stored as {result.record_id}[/yellow]")
            return
        console.print(
            f"[green]✅ Newsletter saved: {result.item.subject} (ID: {result.record_id})[/green]"
        )

        if summarize:
            _, summarizer = build_summarizer(config, storage)
            try:
                summary = summarizer.summarize(storage.get_record(result.record_id))
            except SummarizationUnavailable as e:
                console.print(f"[bold red]❌ {e}[/bold red]")
                raise typer.Exit(1)
            console.print(summary.summary_text)
    finally:
        shutdown_store()


@app.command("ingest-event")
def ingest_event(
    path: Path = typer.Argument(..., help="Slack Events API payload (JSON), or - for stdin"),
) -> None:
    """Handle one chat event payload and print the response body."""
    config = load_config()
    text = sys.stdin.read() if str(path) == "-" else path.read_text()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        console.print(f"[bold red]❌ Invalid JSON payload: {e}[/bold red]")
        raise typer.Exit(1)

    storage = open_store(config)
    try:
        response = build_pipeline(config, storage).handle_chat_payload(payload)
    finally:
        shutdown_store()
    console.print_json(data=response)


@app.command("summarize")
def summarize_command(
    record_ids: List[str] = typer.Argument(..., help="Record ids to summarize"),
) -> None:
    """Summarize records (cached summaries are reused) and print a digest."""
    config = load_config()
    storage = open_store(config)
    try:
        _, summarizer = build_summarizer(config, storage)
        result = summarizer.summarize_records(record_ids)
    finally:
        shutdown_store()

    for entry in result.summaries:
        console.print(f"\n[bold]{entry.record.subject}[/bold] [dim]({entry.record.id})[/dim]")
        console.print(entry.summary.summary_text)
        for point in entry.summary.key_points:
            console.print(f"  • {point}")
    for record_id, error in result.errors.items():
        console.print(f"[red]{record_id}: {error}[/red]")
    if result.digest:
        print_digest(result.digest)

    if not result.summaries:
        raise typer.Exit(1)


@app.command()
def digest(
    limit: int = typer.Option(10, "--limit", "-l", help="Newest summarized records to include"),
    latest: bool = typer.Option(False, "--latest", help="Show the last stored digest"),
) -> None:
    """Synthesize a digest from the newest summarized newsletters."""
    config = load_config()
    storage = open_store(config)
    try:
        if latest:
            stored = storage.get_latest_digest()
            if stored is None:
                console.print("[yellow]No digest yet[/yellow]")
                return
            print_digest(stored)
            return

        records = storage.list_records(limit=limit)
        summaries = storage.get_summaries_for_records([r.id for r in records])
        entries = [
            SummarizedRecord(record=r, summary=summaries[r.id])
            for r in records
            if r.id in summaries
        ]
        synthesizer = DigestSynthesizer(build_providers(config.providers), storage)
        try:
            result = synthesizer.synthesize(entries)
        except SummarizationUnavailable as e:
            console.print(f"[bold red]❌ {e}[/bold red]")
            raise typer.Exit(1)
    finally:
        shutdown_store()

    print_digest(result)


@app.command("list")
def list_records(
    limit: int = typer.Option(20, "--limit", "-l"),
    offset: int = typer.Option(0, "--offset"),
    sender: Optional[str] = typer.Option(None, "--sender", help="Only this sender email"),
) -> None:
    """List stored newsletters, newest first."""
    config = load_config()
    storage = open_store(config)
    try:
        if sender:
            records = storage.get_records_by_sender(sender, limit=limit)
        else:
            records = storage.list_records(limit=limit, offset=offset)
        summaries = storage.get_summaries_for_records([r.id for r in records])
        total = storage.count_records()
    finally:
        shutdown_store()

    table = Table(title=f"Newsletters ({total} total)")
    table.add_column("Received", style="dim")
    table.add_column("Sender")
    table.add_column("Subject")
    table.add_column("Summary", justify="center")
    table.add_column("ID", style="dim")
    for record in records:
        table.add_row(
            record.received_at.strftime("%Y-%m-%d %H:%M"),
            record.sender_name,
            record.subject,
            "✓" if record.id in summaries else "",
            record.id,
        )
    console.print(table)


@feeds_app.command("add")
def feeds_add(
    url: str = typer.Argument(..., help="RSS/Atom feed URL"),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Display name"),
) -> None:
    """Add a feed source."""
    config = load_config()
    storage = open_store(config)
    try:
        feed_id = storage.add_feed(url, name or extract_name_from_url(url))
    finally:
        shutdown_store()
    console.print(f"[green]✅ Feed added: {feed_id}[/green]")


@feeds_app.command("list")
def feeds_list() -> None:
    """List feed sources."""
    config = load_config()
    storage = open_store(config)
    try:
        feeds = storage.get_all_feeds()
    finally:
        shutdown_store()

    table = Table(title="Feeds")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("URL")
    table.add_column("Enabled", justify="center")
    table.add_column("Last fetched", style="dim")
    for feed in feeds:
        table.add_row(
            feed.id,
            feed.name,
            feed.url,
            "✓" if feed.enabled else "✗",
            feed.last_fetched_at.strftime("%Y-%m-%d %H:%M") if feed.last_fetched_at else "never",
        )
    console.print(table)


def _set_feed_enabled(feed_id: str, enabled: bool) -> None:
    config = load_config()
    storage = open_store(config)
    try:
        found = storage.set_feed_enabled(feed_id, enabled)
    finally:
        shutdown_store()
    if not found:
        console.print(f"[red]No feed with id {feed_id}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✅ Feed {feed_id} {'enabled' if enabled else 'disabled'}[/green]")


@feeds_app.command("disable")
def feeds_disable(feed_id: str = typer.Argument(...)) -> None:
    """Stop collecting a feed."""
    _set_feed_enabled(feed_id, False)


@feeds_app.command("enable")
def feeds_enable(feed_id: str = typer.Argument(...)) -> None:
    """Resume collecting a feed."""
    _set_feed_enabled(feed_id, True)


def run_collection_sync(pipeline: IngestionPipeline) -> None:
    """Synchronous wrapper to run a collection pass for the scheduler."""
    console.print(
        f"\n[blue]⏰ Running scheduled collection at {datetime.now().strftime('%H:%M:%S')}[/blue]"
    )
    stats = pipeline.collect_feeds()
    if stats["items_new"] == 0:
        console.print("[dim]No new items found[/dim]\n")


async def run_scheduler(config: Config, test_mode: bool = False) -> None:
    """Run the daemon with APScheduler for periodic collection."""
    global scheduler

    console.print("🔧 Initializing components...")
    storage = open_store(config)
    chain, summarizer = build_summarizer(config, storage)

    console.print("🔌 Checking LLM providers...")
    for name, error in check_providers(chain).items():
        if error:
            console.print(f"[yellow]⚠️  {name}: {error}[/yellow]")
        else:
            console.print(f"[green]✅ {name}[/green]")

    worker = SummaryWorker(summarizer)
    pipeline = build_pipeline(config, storage, worker)

    scheduler = AsyncIOScheduler()
    if test_mode:
        interval_trigger = IntervalTrigger(seconds=5)
        interval_msg = "5 seconds"
    else:
        interval_trigger = IntervalTrigger(minutes=config.collect_interval)
        interval_msg = f"{config.collect_interval} minutes"

    scheduler.add_job(
        func=run_collection_sync,
        args=(pipeline,),
        trigger=interval_trigger,
        id="collect_feeds",
        name="Collect RSS feeds",
        replace_existing=True,
        max_instances=1,  # Prevent overlapping runs
    )
    scheduler.add_job(
        func=run_collection_sync,
        args=(pipeline,),
        trigger="date",  # Run once immediately
        id="initial_run",
        name="Initial collection on startup",
    )
    scheduler.add_job(
        func=get_event_log().cleanup_old_files,
        trigger=IntervalTrigger(hours=24),
        id="event_log_cleanup",
        name="Prune old event logs",
        replace_existing=True,
        max_instances=1,
    )

    def signal_handler(sig, frame) -> None:
        console.print("\n[yellow]Received shutdown signal, stopping scheduler...[/yellow]")
        if scheduler and scheduler.running:
            scheduler.shutdown(wait=False)
        worker.shutdown(wait_for_pending=False)
        shutdown_store()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    scheduler.start()
    console.print(
        f"[green]✅ Scheduler started - will collect feeds every {interval_msg}[/green]"
    )
    console.print("[dim]Press Ctrl+C to stop[/dim]\n")

    try:
        await asyncio.Event().wait()
    finally:
        if scheduler and scheduler.running:
            scheduler.shutdown(wait=True)
        worker.shutdown()
        shutdown_store()


@app.command()
def run(
    test_mode: bool = typer.Option(False, "--test", help="Test mode with 5 second intervals"),
) -> None:
    """Run the collection daemon with background summarization."""
    config = load_config()
    mode = "test mode (5 second intervals)" if test_mode else "scheduler mode"
    console.print(f"[bold blue]Starting Letterbox daemon ({mode})[/bold blue]")
    asyncio.run(run_scheduler(config, test_mode=test_mode))


if __name__ == "__main__":
    app()
