"""CLI entry point for triagekit."""

from __future__ import annotations

import logging
from pathlib import Path

import anthropic
import typer
from rich import print as rprint
from rich.logging import RichHandler
from rich.table import Table

from triagekit.chat.export import load_export
from triagekit.classify.embeddings import CachedEmbedder, OpenAIEmbeddingProvider
from triagekit.classify.runner import ClassificationRunner
from triagekit.classify.similarity import SimilarityEngine
from triagekit.classify.state import DEFAULT_LIMIT, ClassificationStateMachine
from triagekit.config import Config
from triagekit.correlate.features import FeatureMatcher, load_features
from triagekit.correlate.grouper import GroupingEngine
from triagekit.correlate.titles import TitleSuggester
from triagekit.errors import NoCredentialsError, SourceSchemaError
from triagekit.github.client import GitHubClient, IssueSource
from triagekit.github.credentials import CredentialPool
from triagekit.github.fetcher import PagedFetcher
from triagekit.models import EXPORT_PENDING, EXPORTED
from triagekit.storage.cache import SignalStore
from triagekit.storage.db import get_connection
from triagekit.storage.history import HISTORY_FILENAME, HistoryStore
from triagekit.storage.repository import Repository
from triagekit.sync import sync_collection

app = typer.Typer(help="Correlate chat threads with GitHub issues and group them for triage.")

ISSUES_COLLECTION = "issues"


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _chat_collection(channel: str) -> str:
    return f"chat-{channel}"


def _load_config() -> Config:
    config = Config.load()
    config.data_dir.mkdir(parents=True, exist_ok=True)
    return config


def _embedder(config: Config, repo_store: Repository) -> CachedEmbedder | None:
    if not config.openai_api_key:
        rprint("[yellow]OPENAI_API_KEY not set, using keyword scoring only[/yellow]")
        return None
    provider = OpenAIEmbeddingProvider(api_key=config.openai_api_key, model=config.embedding_model)
    return CachedEmbedder(provider, repo_store)


@app.command("sync-issues")
def sync_issues(
    limit: int = typer.Option(None, help="Max number of issues to list"),
    full: bool = typer.Option(False, help="Ignore the cache and fetch everything"),
    anonymous: bool = typer.Option(False, help="Use unauthenticated requests"),
) -> None:
    """Fetch new and updated issues into the local cache."""
    config = _load_config()
    issues = config.validate()
    if anonymous:
        issues = [i for i in issues if not i.startswith("No GitHub credentials")]
    if issues:
        for issue in issues:
            rprint(f"[red]Config error: {issue}[/red]")
        raise typer.Exit(1)

    pool = None
    if not anonymous:
        try:
            pool = CredentialPool.from_config(config)
        except NoCredentialsError as e:
            rprint(f"[red]{e}[/red]")
            raise typer.Exit(1)

    client = GitHubClient(repo=config.repo, pool=pool)
    store = SignalStore(config.data_dir)
    try:
        report = sync_collection(
            PagedFetcher(IssueSource(client)), store, ISSUES_COLLECTION, limit=limit, full=full
        )
    finally:
        client.close()

    rprint(f"\n[bold]Synced {config.repo}:[/bold]")
    rprint(f"  Listed:  {report.listed} ({report.pages} page(s))")
    rprint(f"  Fetched: {report.fetched}")
    rprint(f"  Reused:  {report.reused}")
    rprint(f"  Cached:  {report.total}")
    if report.missing:
        rprint(f"  [yellow]Gone (404): {', '.join(report.missing)}[/yellow]")
    if report.failed:
        rprint(f"  [yellow]Failed: {', '.join(report.failed)}[/yellow]")

    if pool is not None:
        for status in pool.status():
            rprint(
                f"  {status['identifier']}: {status['remaining']}/{status['ceiling']} "
                f"remaining, resets in {status['reset_in_minutes']} min"
            )

    if report.exhausted:
        rprint(f"\n[yellow]{report.error}. Progress so far is saved; run again later.[/yellow]")
        raise typer.Exit(2)


@app.command("import-chat")
def import_chat(
    export_file: Path = typer.Argument(help="JSON export of channel messages"),
    channel: str = typer.Option(..., help="Channel name used for the cache file"),
) -> None:
    """Merge a chat export into the local cache."""
    config = _load_config()
    store = SignalStore(config.data_dir)
    collection = _chat_collection(channel)

    try:
        messages = load_export(export_file)
    except (OSError, ValueError, SourceSchemaError) as e:
        rprint(f"[red]Could not read {export_file}: {e}[/red]")
        raise typer.Exit(1)

    cached = store.load(collection)
    merged = store.merge(cached.items, messages)
    store.save(collection, merged)

    threads, standalone = store.organize_by_thread(merged)
    rprint(
        f"Imported [bold]{len(messages)}[/bold] messages into {collection}: "
        f"{len(merged)} cached, {len(threads)} thread(s), {len(standalone)} standalone"
    )


@app.command()
def classify(
    channel: str = typer.Option(..., help="Channel to classify"),
    limit: int = typer.Option(DEFAULT_LIMIT, help="Max units to classify on later runs"),
    classify_all: bool = typer.Option(False, "--all", help="Classify every pending unit"),
    re_classify: bool = typer.Option(False, help="Classify completed units again"),
    min_score: float = typer.Option(None, help="Minimum match score (0-1)"),
) -> None:
    """Match chat threads against cached issues."""
    config = _load_config()
    store = SignalStore(config.data_dir)
    units = store.load_units(_chat_collection(channel))
    targets = store.load(ISSUES_COLLECTION).items
    if not units:
        rprint(f"[red]No cached messages for {channel}. Run 'triagekit import-chat' first.[/red]")
        raise typer.Exit(1)
    if not targets:
        rprint("[yellow]No cached issues, every unit will complete without matches.[/yellow]")

    conn = get_connection(config.database_path)
    repo_store = Repository(conn)
    try:
        state = ClassificationStateMachine(
            HistoryStore(config.data_dir / HISTORY_FILENAME), first_run_cap=config.first_run_cap
        )
        runner = ClassificationRunner(
            state,
            SimilarityEngine(embedder=_embedder(config, repo_store)),
            batch_size=config.batch_size,
            min_score=config.min_similarity if min_score is None else min_score,
        )
        report = runner.run(
            units, targets, re_classify=re_classify, limit=limit, classify_all=classify_all
        )
    finally:
        conn.close()

    rprint("\n[bold]Classification complete:[/bold]")
    if report.first_run:
        rprint(f"  First run, capped at {config.first_run_cap} oldest unit(s)")
    rprint(f"  Recovered stale: {report.recovered}")
    rprint(f"  Migrated:        {report.migrated}")
    rprint(f"  Classified:      {report.classified} of {report.selected} selected")
    rprint(f"  With matches:    {report.matched}")
    rprint(f"  History:         {state.counts()}")


@app.command()
def group(
    channel: str = typer.Option(..., help="Channel whose classified units to group"),
    semantic: bool = typer.Option(False, help="Cluster units by similarity instead of by issue"),
    min_similarity: float = typer.Option(None, help="Grouping threshold (0-1)"),
    features: Path = typer.Option(None, help="JSON file of feature areas"),
) -> None:
    """Group classified units and store the groups."""
    config = _load_config()
    store = SignalStore(config.data_dir)
    units = store.load_units(_chat_collection(channel))
    threshold = config.group_min_similarity if min_similarity is None else min_similarity

    conn = get_connection(config.database_path)
    repo_store = Repository(conn)
    try:
        embedder = _embedder(config, repo_store)
        matcher = FeatureMatcher(load_features(features), embedder) if features else None
        titles = TitleSuggester(
            anthropic.Anthropic(api_key=config.anthropic_api_key) if config.anthropic_api_key else None
        )
        engine = GroupingEngine(embedder=embedder, feature_classifier=matcher, titles=titles)

        if semantic:
            result = engine.group_semantic(units, min_similarity=threshold)
        else:
            history = HistoryStore(config.data_dir / HISTORY_FILENAME).load()
            matches = {unit_id: record.matches for unit_id, record in history.items()}
            targets = store.load(ISSUES_COLLECTION).by_id()
            result = engine.group_by_matches(units, matches, targets, min_similarity=threshold)

        saved = repo_store.save_groups(result.groups)
    finally:
        conn.close()

    table = Table(title=f"{len(saved)} group(s)")
    table.add_column("Group")
    table.add_column("Title")
    table.add_column("Units", justify="right")
    table.add_column("Priority")
    table.add_column("Status")
    for g in saved:
        marker = " [magenta](cross-cutting)[/magenta]" if g.is_cross_cutting else ""
        table.add_row(g.id, g.title + marker, str(len(g.unit_ids)), g.priority, g.export_status)
    rprint(table)
    rprint(f"{len(result.ungrouped)} unit(s) not grouped")


@app.command()
def duplicates(
    channel: str = typer.Option(..., help="Channel to check"),
    threshold: float = typer.Option(0.9, help="Word overlap threshold (0-1)"),
) -> None:
    """List near-identical units."""
    config = _load_config()
    units = SignalStore(config.data_dir).load_units(_chat_collection(channel))
    pairs = GroupingEngine().find_duplicates(units, threshold=threshold)
    if not pairs:
        rprint("No duplicates found")
        return
    for first, second, score in pairs:
        rprint(f"  {first} ~ {second} ({score:.0%})")


@app.command("mark-exported")
def mark_exported(
    group_id: str = typer.Argument(help="Group id"),
    external_id: str = typer.Argument(help="Tracker issue id"),
    url: str = typer.Option(None, help="Tracker issue URL"),
    identifier: str = typer.Option(None, help="Human-readable tracker key, e.g. ENG-123"),
) -> None:
    """Record the tracker issue created for a group."""
    config = _load_config()
    conn = get_connection(config.database_path)
    try:
        if not Repository(conn).mark_group_exported(group_id, external_id, url, identifier):
            rprint(f"[red]Unknown group {group_id}[/red]")
            raise typer.Exit(1)
    finally:
        conn.close()
    rprint(f"[green]{group_id} marked exported as {identifier or external_id}[/green]")


@app.command()
def stats() -> None:
    """Show cache, classification and grouping statistics."""
    config = _load_config()
    store = SignalStore(config.data_dir)
    issues = store.load(ISSUES_COLLECTION)
    history = HistoryStore(config.data_dir / HISTORY_FILENAME).load()

    counts: dict[str, int] = {}
    for record in history.values():
        counts[record.status] = counts.get(record.status, 0) + 1

    conn = get_connection(config.database_path)
    try:
        s = Repository(conn).get_stats()
    finally:
        conn.close()

    rprint("[bold]triagekit statistics:[/bold]")
    rprint(f"  Cached issues:     {issues.total_count}")
    latest = store.most_recent_update(issues.items)
    if latest:
        rprint(f"  Latest activity:   {latest.isoformat()}")
    rprint(f"  Classified units:  {counts}")
    rprint(f"  Groups:            {s['total_groups']} ({s['pending_groups']} {EXPORT_PENDING}, "
           f"{s['exported_groups']} {EXPORTED})")
    rprint(f"  Cross-cutting:     {s['cross_cutting_groups']}")
    rprint(f"  Cached embeddings: {s['cached_embeddings']}")


if __name__ == "__main__":
    app()
