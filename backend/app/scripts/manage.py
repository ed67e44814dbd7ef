"""Admin CLI for the Stella Clips backend."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, NoReturn

import click
from rich.console import Console
from rich.table import Table

from backend.app.dependencies import get_settings, get_video_service, get_youtube_service
from backend.app.errors import StellaClipsError
from backend.app.services.video_service import IngestReport, SearchResult
from backend.app.services.youtube_service import ChannelProcessResult

console = Console()


def _fail(exc: StellaClipsError) -> NoReturn:
    console.print(f"[red]{exc}[/red]")
    raise SystemExit(1)


def _print_ingest_report(report: IngestReport) -> None:
    console.print(
        f"[bold]{report.source_query}[/bold]: "
        f"[green]{report.created} created[/green], "
        f"{report.updated} updated, "
        f"[yellow]{report.skipped} skipped[/yellow], "
        f"[red]{report.failed} failed[/red]"
    )
    problems = [outcome for outcome in report.outcomes if outcome.reason is not None]
    for outcome in problems:
        console.print(
            f"  #{outcome.index} {outcome.external_video_id or '-'} "
            f"{outcome.status}: {outcome.reason}"
        )


def _print_channel_result(result: ChannelProcessResult) -> None:
    if not result.success:
        console.print(f"[red]{result.member}: {result.error}[/red]")
        return
    console.print(
        f"[cyan]{result.member}[/cyan] found={result.videos_found} "
        f"processed={result.videos_processed}"
    )
    if result.report is not None:
        _print_ingest_report(result.report)


def _print_search_result(result: SearchResult) -> None:
    table = Table(title=f"page {result.page}/{max(result.total_pages, 1)} ({result.total} videos)")
    table.add_column("video")
    table.add_column("title")
    table.add_column("published")
    table.add_column("views", justify="right")
    table.add_column("members")
    table.add_column("official")
    for video in result.videos:
        table.add_row(
            video.external_video_id,
            video.title,
            video.published_at[:10],
            str(video.view_count) if video.view_count is not None else "-",
            ", ".join(member.name for member in video.member_appearances) or "-",
            "yes" if video.is_official else "",
        )
    console.print(table)


@click.group()
@click.version_option(version="0.1.0")
def main() -> None:
    """Stella Clips admin commands."""


@main.command()
def status() -> None:
    """Show database counts and configuration."""
    settings = get_settings()
    service = get_video_service()
    stats = service.stats()

    console.print("\n[bold cyan]Stella Clips Status[/bold cyan]\n")
    console.print(f"[bold]Database:[/bold] {settings.db_path}")
    console.print(f"  Videos: {stats.total}")
    console.print(f"  Official: {stats.official}")
    console.print(f"  Unofficial: {stats.unofficial}")
    console.print(f"  Members: {stats.members}")

    table = Table(title="Cohorts")
    table.add_column("cohort")
    table.add_column("members")
    table.add_column("official channel")
    channels = settings.official_channel_ids
    for cohort, members in service.taxonomy.as_dict().items():
        for member in members:
            table.add_row(cohort, member, channels.get(member, "-"))
    console.print(table)
    console.print(
        f"\n[bold]YouTube API key:[/bold] "
        f"{'configured' if settings.youtube_api_key else '[yellow]missing[/yellow]'}\n"
    )


@main.command()
def seed() -> None:
    """Sync the members table with the cohort taxonomy."""
    members = get_video_service().seed_members()
    console.print(f"[green]Seeded {len(members)} members[/green]")


@main.command("ingest-file")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--source-query", default="manual", show_default=True)
def ingest_file(path: Path, source_query: str) -> None:
    """Ingest YouTube `videos` resources from a JSON file (a list or an `items` response)."""
    raw: Any = json.loads(path.read_text(encoding="utf-8"))
    items = raw.get("items", []) if isinstance(raw, dict) else raw
    if not isinstance(items, list):
        raise click.BadParameter("expected a JSON list or an object with `items`")

    service = get_video_service()
    batch_size = get_settings().ingest_batch_max_items
    for start in range(0, len(items), batch_size):
        try:
            report = service.ingest(items[start : start + batch_size], source_query=source_query)
        except StellaClipsError as exc:
            _fail(exc)
        _print_ingest_report(report)


@main.command("ingest-official")
@click.argument("member")
@click.option("--max-results", type=click.IntRange(1, 50), default=None)
def ingest_official(member: str, max_results: int | None) -> None:
    """Fetch recent uploads from MEMBER's official channel."""
    try:
        result = get_youtube_service().fetch_official_channel_videos(
            member,
            max_results=max_results,
        )
    except StellaClipsError as exc:
        _fail(exc)
    _print_channel_result(result)


@main.command("ingest-clips")
@click.argument("member")
@click.option("--max-results", type=click.IntRange(1, 50), default=None)
def ingest_clips(member: str, max_results: int | None) -> None:
    """Search fan clips about MEMBER."""
    try:
        result = get_youtube_service().search_clip_videos(member, max_results=max_results)
    except StellaClipsError as exc:
        _fail(exc)
    _print_channel_result(result)


@main.command("ingest-batch")
@click.argument("members", nargs=-1, required=True)
def ingest_batch(members: tuple[str, ...]) -> None:
    """Fetch official uploads for several MEMBERS."""
    try:
        result = get_youtube_service().batch_process_channels(list(members))
    except StellaClipsError as exc:
        _fail(exc)
    for channel_result in result.results:
        _print_channel_result(channel_result)
    console.print(
        f"\n{len(result.successful)}/{len(result.processed)} channels successful, "
        f"{result.total_videos_processed} videos processed"
    )


@main.command()
@click.option("--cohort", default=None)
@click.option("--member", default=None)
@click.option("--sort", default=None)
@click.option("--page", type=click.IntRange(min=1), default=1, show_default=True)
@click.option("--limit", type=click.IntRange(min=1), default=None)
@click.option("--official/--unofficial", "is_official", default=None)
def search(
    cohort: str | None,
    member: str | None,
    sort: str | None,
    page: int,
    limit: int | None,
    is_official: bool | None,
) -> None:
    """Query stored videos by cohort or member."""
    try:
        result = get_video_service().search(
            cohort=cohort,
            member=member,
            sort=sort,
            page=page,
            limit=limit,
            is_official=is_official,
        )
    except StellaClipsError as exc:
        _fail(exc)
    _print_search_result(result)


@main.command("tag-videos")
def tag_videos() -> None:
    """Backfill member tags for stored videos."""
    report = get_video_service().tag_existing_videos()
    console.print(
        f"Scanned {report.videos_scanned} videos, tagged {report.videos_tagged}, "
        f"created {report.links_created} links"
    )
    for member, count in sorted(report.links_by_member.items()):
        console.print(f"  {member}: {count}")


@main.command("uppercase-migration")
def uppercase_migration() -> None:
    """Rewrite member names to their uppercase canonical form."""
    report = get_video_service().normalize_member_names()
    if not report.renames and not report.errors:
        console.print("[green]All member names already canonical[/green]")
        return
    for rename in report.renames:
        suffix = " (merged)" if rename.merged_into is not None else ""
        console.print(f"  {rename.old_name} -> {rename.new_name}{suffix}")
    for error in report.errors:
        console.print(f"  [red]{error.name}: {error.reason}[/red]")
    if report.errors:
        raise SystemExit(1)


@main.command("export-openapi")
@click.option(
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("openapi/openapi.json"),
    show_default=True,
)
def export_openapi(output: Path) -> None:
    """Write the HTTP API schema as JSON."""
    from backend.app.main import create_app

    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(create_app().openapi(), indent=2), encoding="utf-8")
    console.print(f"Wrote OpenAPI schema to {output}")


if __name__ == "__main__":
    main()
