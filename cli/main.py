"""CLI interface for Engagement Hub."""
import asyncio
import json
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from adapters.errors import SourceError
from config import Config
from database.db_manager import DatabaseManager
from database.errors import QueryFailure
from engagement.queries import QueryFacade
from engagement.webinars import WebinarService
from sync.pipeline import SyncPipeline, SyncReport, SyncState
from sync.webhooks import HRWebhookProcessor
from utils.logger import setup_logging, get_logger

console = Console()
logger = get_logger(__name__)


def _require(slack: bool = False, hibob: bool = False):
    try:
        Config.validate(slack=slack, hibob=hibob)
    except ValueError as e:
        console.print(f"[red]Configuration Error: {e}[/red]")
        console.print("[yellow]Please check your .env file[/yellow]")
        raise click.Abort()


def _print_report(report: SyncReport, title: str):
    table = Table(title=title)
    table.add_column("Scope", style="cyan")
    table.add_column("State", style="green")
    table.add_column("Saved", justify="right")
    table.add_column("Failed", justify="right")

    for result in report.scopes:
        state = "[green]done[/green]" if result.ok else f"[red]failed ({result.state.value})[/red]"
        table.add_row(result.scope, state, str(result.saved), str(result.failed))

    console.print(table)

    for error in report.errors:
        console.print(f"[red]✗ {error.scope}[/red] [{error.kind.value}] {error.message}")

    if report.state == SyncState.DONE:
        console.print("[bold green]Sync complete![/bold green]")
    else:
        console.print(f"[bold yellow]Sync finished with {len(report.errors)} failed scope(s)[/bold yellow]")


def _queries() -> QueryFacade:
    return QueryFacade(DatabaseManager())


def _run_query(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except QueryFailure as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort()


@click.group()
@click.option('--log-level', default=None, help='Logging level')
def cli(log_level):
    """Engagement Hub - Slack engagement, HR and webinar metrics."""
    setup_logging(log_level=log_level)
    Config.create_directories()


@cli.command()
def init():
    """Initialize database schema."""
    console.print("[bold blue]Initializing Engagement Hub...[/bold blue]")
    DatabaseManager()
    console.print("[green]✓ Database initialized[/green]")
    console.print(f"  URL: {Config.DATABASE_URL}")


@cli.command()
def stats():
    """Show database statistics."""
    console.print("[bold blue]Database Statistics[/bold blue]")
    stats = _run_query(_queries().get_statistics)

    table = Table(title="Engagement Hub Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="green")

    for name, count in stats.items():
        table.add_row(name.replace("_", " ").title(), str(count))

    console.print(table)


# ----------------------------------------------------------------------
# Sync
# ----------------------------------------------------------------------

@cli.command()
@click.argument('channel_id')
def sync_channel(channel_id):
    """Sync one Slack channel and rebuild its rollups."""
    _require(slack=True)
    console.print(f"[bold blue]Syncing channel {channel_id}...[/bold blue]")
    report = asyncio.run(SyncPipeline().sync_channel_data(channel_id))
    _print_report(report, "Channel Sync")


@cli.command()
def sync_all():
    """Sync every Slack channel the bot is a member of."""
    _require(slack=True)
    console.print("[bold blue]Syncing all member channels...[/bold blue]")
    console.print("[yellow]Note: This may take a long time due to rate limits[/yellow]")
    report = asyncio.run(SyncPipeline().sync_all_channels())
    _print_report(report, "Slack Sync")


@cli.command()
@click.option('--incremental', is_flag=True, help='Only tasks and time off')
def sync_hr(incremental):
    """Sync HiBob employees, tasks, time off and reports."""
    _require(hibob=True)
    console.print("[bold blue]Syncing HiBob data...[/bold blue]")
    pipeline = SyncPipeline()
    report = asyncio.run(pipeline.sync_hr_incremental() if incremental else pipeline.sync_all_hr())
    _print_report(report, "HiBob Sync")


@cli.command()
@click.argument('event_file', type=click.Path(exists=True, dir_okay=False))
def process_webhook(event_file):
    """Apply a saved HiBob webhook delivery (JSON file)."""
    _require(hibob=True)
    event = json.loads(Path(event_file).read_text())
    try:
        handled = asyncio.run(HRWebhookProcessor().process(
            event["type"], event["id"], event.get("data") or {}
        ))
    except (KeyError, SourceError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise click.Abort()

    if handled:
        console.print(f"[green]✓ Processed {event['type']} ({event['id']})[/green]")
    else:
        console.print(f"[yellow]Skipped {event['type']} ({event['id']})[/yellow]")


# ----------------------------------------------------------------------
# Engagement
# ----------------------------------------------------------------------

@cli.command()
@click.option('--days', default=30, help='Look-back window in days')
def overview(days):
    """Workspace engagement overview."""
    data = _run_query(_queries().get_workspace_overview, days)

    console.print(f"[bold blue]Workspace Overview ({days} days)[/bold blue]")
    console.print(f"  Messages: [cyan]{data['total_messages']}[/cyan]")
    console.print(f"  Channels: [cyan]{data['total_channels']}[/cyan]")
    console.print(f"  Active users: [cyan]{data['total_users']}[/cyan]")
    console.print(f"  Avg engagement score: [cyan]{data['avg_engagement_score']:.2f}[/cyan]")
    active = data["most_active_channel"]
    console.print(f"  Most active channel: [cyan]{active['name']}[/cyan] ({active['message_count']} messages)")

    table = Table(title="Channels")
    table.add_column("Channel", style="cyan")
    table.add_column("Messages", justify="right")
    table.add_column("Active Users", justify="right")
    table.add_column("Avg Score", justify="right", style="green")

    for row in data["channel_breakdown"]:
        table.add_row(
            row["channel_name"] or row["channel_id"],
            str(row["message_count"]),
            str(row["user_count"]),
            f"{row['engagement_score']:.2f}",
        )

    console.print(table)


@cli.command()
@click.argument('channel_id')
@click.option('--days', default=30, help='Look-back window in days')
def channel_activity(channel_id, days):
    """Activity summary for one channel."""
    data = _run_query(_queries().get_channel_activity, channel_id, days)

    table = Table(title=f"#{data['channel_name']} ({days} days)")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    for key in ("total_messages", "total_users", "avg_engagement_score", "most_active_day", "trend"):
        value = data[key]
        table.add_row(key.replace("_", " ").title(), f"{value:.2f}" if isinstance(value, float) else str(value))

    console.print(table)


@cli.command()
@click.option('--channel', 'channel_id', default=None, help='Restrict to one channel')
@click.option('--days', default=30, help='Look-back window in days')
@click.option('--limit', default=Config.USER_RANKINGS_LIMIT, help='Number of users')
def rankings(channel_id, days, limit):
    """Rank users by engagement score."""
    rows = _run_query(_queries().get_user_rankings, channel_id, days, limit)

    table = Table(title="User Rankings")
    table.add_column("Rank", justify="right")
    table.add_column("User", style="cyan")
    table.add_column("Messages", justify="right")
    table.add_column("Reactions", justify="right")
    table.add_column("Score", justify="right", style="green")

    for row in rows:
        table.add_row(
            str(row["rank"]),
            row["user_name"] or row["user_id"],
            str(row["message_count"]),
            str(row["reaction_count"]),
            f"{row['engagement_score']:.2f}",
        )

    console.print(table)


@cli.command()
@click.option('--days', default=30, help='Look-back window in days')
@click.option('--limit', default=Config.TOP_POSTS_LIMIT, help='Number of posts')
def top_posts(days, limit):
    """Most engaging messages."""
    rows = _run_query(_queries().get_top_posts, days, limit)

    table = Table(title="Top Posts")
    table.add_column("Channel", style="cyan")
    table.add_column("Author", style="magenta")
    table.add_column("Text")
    table.add_column("Reactions", justify="right")
    table.add_column("Replies", justify="right")
    table.add_column("Score", justify="right", style="green")

    for row in rows:
        text = row["text"] or ""
        table.add_row(
            row["channel_name"] or "",
            row["user_name"] or "",
            text[:60] + ("..." if len(text) > 60 else ""),
            str(row["reaction_count"]),
            str(row["reply_count"]),
            f"{row['engagement_score']:.2f}",
        )

    console.print(table)


@cli.command()
@click.option('--days', default=30, help='Look-back window in days')
def activation(days):
    """Daily active and new users."""
    data = _run_query(_queries().get_user_activation_metrics, days)

    console.print(f"[bold blue]User Activation ({days} days)[/bold blue]")
    console.print(f"  Workspace users: [cyan]{data['total_workspace_users']}[/cyan]")
    console.print(f"  Active users: [cyan]{data['active_users']}[/cyan] ({data['activation_rate']:.1f}%)")
    console.print(f"  Trend: [cyan]{data['activation_trend']}[/cyan]")

    table = Table()
    table.add_column("Date", style="cyan")
    table.add_column("Active", justify="right", style="green")
    table.add_column("New", justify="right")
    table.add_column("Rate %", justify="right")

    for row in data["daily_activation"]:
        table.add_row(row["date"], str(row["active_users"]), str(row["new_users"]), f"{row['activation_rate']:.1f}")

    console.print(table)


# ----------------------------------------------------------------------
# HR
# ----------------------------------------------------------------------

@cli.command()
def hr_metrics():
    """HR dashboard: headcount, tasks, time off, engagement survey."""
    data = _run_query(_queries().get_dashboard_metrics)
    headcount, tasks, time_off = data["headcount"], data["tasks"], data["timeOff"]

    table = Table(title="HR Dashboard")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Headcount", str(headcount["total"]))
    table.add_row("Joiners (30d / 90d)", f"{headcount['joiners30d']} / {headcount['joiners90d']}")
    table.add_row("Leavers (30d / 90d)", f"{headcount['leavers30d']} / {headcount['leavers90d']}")
    table.add_row("Open tasks", str(tasks["totalOpen"]))
    table.add_row("Overdue tasks", str(tasks["overdueCount"]))
    table.add_row("Task completion (30d)", f"{tasks['completionRate30d']:.1f}%")
    table.add_row("Out today", str(time_off["whosOutToday"]))
    table.add_row("Out this week", str(time_off["whosOutThisWeek"]))
    table.add_row("Time-off approval (30d)", f"{time_off['approvalRate30d']:.1f}%")

    engagement = data["engagement"]
    if engagement.get("averageEngagementScore") is not None:
        table.add_row("Engagement score", f"{engagement['averageEngagementScore']:.2f}")
        table.add_row("Survey response rate", f"{engagement['responseRate']:.1f}%")

    console.print(table)


# ----------------------------------------------------------------------
# Webinars
# ----------------------------------------------------------------------

@cli.command()
@click.argument('csv_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--name', required=True, help='Webinar name')
@click.option('--host', required=True, help='Host name')
def webinar_upload(csv_file, name, host):
    """Import a webinar attendance CSV export."""
    content = Path(csv_file).read_text(encoding="utf-8-sig")
    result = WebinarService(DatabaseManager()).upload_csv(content, name, host)
    console.print(f"[green]✓ {result['message']}[/green]")
    console.print(f"  Webinar ID: {result['webinar_id']}")


@cli.command()
def webinar_stats():
    """Webinar attendance statistics."""
    stats = WebinarService(DatabaseManager()).get_webinar_stats()

    console.print("[bold blue]Webinar Statistics[/bold blue]")
    console.print(f"  Webinars: [cyan]{stats['total_webinars']}[/cyan]")
    console.print(f"  Attendees: [cyan]{stats['total_attendees']}[/cyan]")
    console.print(f"  Avg per webinar: [cyan]{stats['average_attendance_per_webinar']}[/cyan]")
    console.print(f"  Most popular host: [cyan]{stats['most_popular_host']}[/cyan]")

    table = Table(title="Top Webinars")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Host", style="magenta")
    table.add_column("Attendees", justify="right", style="green")
    table.add_column("Avg Duration", justify="right")

    for webinar in stats["top_webinars_by_attendance"]:
        table.add_row(
            str(webinar["id"]),
            webinar["name"],
            webinar["host"],
            str(webinar["total_attendees"]),
            webinar["average_duration"] or "",
        )

    console.print(table)


if __name__ == "__main__":
    cli()
