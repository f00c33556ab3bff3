import json
from typing import Any, List

import click
import pluggy

from . import db, export, sync
from .client import WaniKaniClient
from .errors import WaniKaniError
from .events import to_dict

hookimpl = pluggy.HookimplMarker("llm")


def _split(value: str) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


@hookimpl  # type: ignore[misc]
def register_commands(cli: Any) -> None:

    @cli.command("wk-init-db")  # type: ignore[misc]
    def init_db() -> None:
        """Create the cache tables."""
        db.init_db()
        click.echo("Database initialized.")

    @cli.command("wk-sync")  # type: ignore[misc]
    def resync() -> None:
        """Expire cached profile, reviews and subjects."""
        cleared = sync.force_resync()
        click.echo(f"Cache cleared ({cleared['profile']} profile, {cleared['reviews']} reviews, "
                   f"{cleared['subjects']} subjects); next request will fetch fresh data.")

    @cli.command("wk-profile")  # type: ignore[misc]
    def profile() -> None:
        """Show the WaniKani user profile."""
        try:
            result = sync.get_profile(WaniKaniClient())
        except WaniKaniError as e:
            raise click.ClickException(str(e))
        data = result["data"]
        click.echo(f"{data['username']} - level {data['level']}/{data['max_level']} ({result['source']})")

    @cli.command("wk-reviews")  # type: ignore[misc]
    def reviews() -> None:
        """List reviews available right now."""
        try:
            result = sync.get_reviews(WaniKaniClient())
        except WaniKaniError as e:
            raise click.ClickException(str(e))
        click.echo(f"{result['count']} review(s) available ({result['source']})")
        for item in result["data"]:
            click.echo(f"  {item['subject_type']:<16} #{item['subject_id']} stage {item['srs_stage']}")

    @cli.command("wk-subjects")  # type: ignore[misc]
    @click.option("--levels", required=True, help="Comma separated levels, e.g. 1,2,3")
    @click.option("--types", default="", help="Comma separated subject types")
    def subjects(levels: str, types: str) -> None:
        """Fetch or show cached subject summaries."""
        try:
            result = sync.get_subjects(WaniKaniClient(), _split(levels), _split(types))
        except WaniKaniError as e:
            raise click.ClickException(str(e))
        click.echo(f"{result['count']} subject(s) ({result['source']})")
        for item in result["data"]:
            click.echo(f"  L{item['level']:<3} {item['type']:<16} {item['characters'] or ''}  "
                       f"{export.srs_label(item['srs_stage'])}")

    @cli.command("wk-details")  # type: ignore[misc]
    @click.argument("ids", nargs=-1, required=True)
    @click.option("--force", is_flag=True, help="Refetch even if cached")
    @click.option("--json", "as_json", is_flag=True, help="Print raw events as JSON lines")
    def details(ids: tuple, force: bool, as_json: bool) -> None:
        """Fetch subject details, printing progress as it happens."""
        try:
            events = sync.synchronize_details(ids, WaniKaniClient(), force=force)
            for event in events:
                if as_json:
                    click.echo(json.dumps(to_dict(event), ensure_ascii=False))
                    continue
                if event.type == "start":
                    click.echo(f"{event.cached} cached, {event.total} to fetch")
                elif event.type == "progress":
                    click.echo(f"[{event.current}/{event.total}] {event.characters} (id: {event.id})")
                elif event.type == "error":
                    click.echo(f"Error fetching {event.id}: {event.message}", err=True)
                elif event.type == "rate_limit":
                    click.echo(f"Rate limited. {event.fetched} fetched, {event.remaining} remaining. "
                               "Wait a minute and try again.", err=True)
                elif event.type == "complete":
                    click.echo(f"Complete. Fetched: {event.fetched}, Cached: {event.cached}, Total: {event.total}")
        except WaniKaniError as e:
            raise click.ClickException(str(e))

    @cli.command("wk-export")  # type: ignore[misc]
    @click.option("--levels", required=True, help="Comma separated levels")
    @click.option("--format", "fmt", type=click.Choice(sorted(export.EXPORT_FORMATS)), default="csv")
    @click.option("--types", default="", help="Only these subject types")
    @click.option("--srs", default="", help="Only these SRS buckets (locked, lesson, apprentice, ...)")
    @click.option("--pos", default="", help="Only these parts of speech; use (empty) for untagged items")
    @click.option("--output", "-o", type=click.File("w", encoding="utf-8"), default="-")
    def export_cmd(levels: str, fmt: str, types: str, srs: str, pos: str, output: Any) -> None:
        """Export cached subjects as CSV or a plain list."""
        try:
            corpus = sync.cached_corpus(_split(levels))
        except WaniKaniError as e:
            raise click.ClickException(str(e))
        criteria = export.FilterCriteria.from_params(types, srs, pos)
        chosen = export.filter_subjects(corpus["subjects"], corpus["details"], criteria)
        output.write(export.render(fmt, chosen, corpus["details"]))


@click.group()
def cli() -> None:
    """WaniKani cache commands."""


register_commands(cli)
