from typing import Any, Dict, List, Optional, Union

import click

from story_archiver.core import orchestrator
from story_archiver.core.exceptions import AmbiguousStoryError, ArchiveError
from story_archiver.core.fetchers.fetcher_factory import FetcherFactory
from story_archiver.core.sources import SOURCES_LIST, StorySource
from story_archiver.utils.logger import get_logger

from .contexts import ArchiveContext

logger = get_logger(__name__)


def display_progress(message: Union[str, Dict[str, Any]]) -> None:
    if isinstance(message, dict):
        status = message.get("status", "info")
        msg = message.get("message", "No message content.")
        color = {"error": "red", "warning": "yellow"}.get(status)
        click.echo(click.style(f"[{status.upper()}] {msg}", fg=color) if color else f"[{status.upper()}] {msg}")
    else:
        click.echo(str(message))


def _build_context(db_path: Optional[str]) -> ArchiveContext:
    context = ArchiveContext(db_path)
    for msg in context.error_messages:
        click.echo(click.style(msg, fg="yellow"), err=True)
    return context


def _report_error(action: str, e: Exception) -> None:
    if isinstance(e, ArchiveError):
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        logger.error(f"{action} failed: {e}", exc_info=True)
    else:
        click.echo(click.style(f"An unexpected error occurred: {e}", fg="red"), err=True)
        logger.error(f"CLI handler caught an unexpected error during {action}: {e}", exc_info=True)


def add_handler(urls: List[str], db_path: Optional[str] = None) -> None:
    context = _build_context(db_path)
    try:
        with context.open_database() as db:
            results = orchestrator.add_stories(
                db,
                urls,
                fetcher_provider=context.get_fetcher,
                allow_partial=context.allow_partial,
                progress_callback=display_progress,
            )
    except Exception as e:
        _report_error("add", e)
        return

    for url, result in results:
        if isinstance(result, Exception):
            click.echo(click.style(f"✗ {url}: {result}", fg="red"), err=True)
            continue
        click.echo(click.style(f"✓ {result.name}", fg="green"))
        click.echo(f"  Story ID: {result.story_id}")
        click.echo(f"  Result: {result.action}, {result.chapters_gained} chapter(s) gained")


def update_handler(story: Optional[str], force: bool, db_path: Optional[str] = None) -> None:
    context = _build_context(db_path)
    try:
        with context.open_database() as db:
            if story:
                story_id = orchestrator.resolve_story(db, story)
                result = orchestrator.update_story(
                    db,
                    StorySource.from_id(story_id),
                    force_refresh=force,
                    fetcher_provider=context.get_fetcher,
                    allow_partial=context.allow_partial,
                    progress_callback=display_progress,
                )
                click.echo(click.style(f"✓ {result.name}: {result.chapters_gained} chapter(s) gained", fg="green"))
                return

            summary = orchestrator.update_archive(
                db,
                force_refresh=force,
                fetcher_provider=context.get_fetcher,
                allow_partial=context.allow_partial,
                max_workers=context.update_workers,
                progress_callback=display_progress,
            )
    except AmbiguousStoryError as e:
        click.echo(click.style(f"'{e.search}' matches more than one story:", fg="yellow"), err=True)
        for match in e.matches:
            click.echo(f"  - {match}", err=True)
        return
    except Exception as e:
        _report_error("update", e)
        return

    click.echo(f"Chapters gained: {summary.chapters_gained}")
    click.echo(f"Stories updated: {summary.stories_updated}")
    if summary.stories_failed:
        click.echo(click.style(f"Stories failed: {summary.stories_failed}", fg="red"))
        for story_id, error in summary.failures:
            click.echo(f"  - {story_id}: {error}")
    else:
        click.echo("Stories failed: 0")


def delete_handler(search: str, db_path: Optional[str] = None) -> None:
    context = _build_context(db_path)
    try:
        with context.open_database() as db:
            story_id = orchestrator.delete_story(db, search)
    except AmbiguousStoryError as e:
        click.echo(click.style(f"'{e.search}' matches more than one story; nothing was deleted:", fg="yellow"), err=True)
        for match in e.matches:
            click.echo(f"  - {match}", err=True)
        return
    except Exception as e:
        _report_error("delete", e)
        return
    click.echo(click.style(f"✓ Deleted {story_id}", fg="green"))


def export_handler(story: str) -> None:
    logger.info(f"Export requested for {story}, which is not implemented.")
    click.echo(click.style("Export is not implemented yet.", fg="yellow"), err=True)


def list_handler(db_path: Optional[str] = None) -> None:
    context = _build_context(db_path)
    try:
        with context.open_database() as db:
            stories = orchestrator.list_stories(db)
    except Exception as e:
        _report_error("list", e)
        return

    if not stories:
        click.echo("The archive is empty.")
        return
    for listed in stories:
        click.echo(
            f"{listed.name} by {listed.author} "
            f"({listed.chapter_count} chapters, {listed.completed}) [{listed.id}]"
        )


def list_sources_handler() -> None:
    click.echo("Supported sources:")
    for name in SOURCES_LIST:
        click.echo(f"  - {name}")


def allow_site_handler(host: str, fetcher_name: str, db_path: Optional[str] = None) -> None:
    if fetcher_name not in FetcherFactory.fetcher_names():
        click.echo(
            click.style(
                f"Unknown fetcher '{fetcher_name}'. Expected one of: {', '.join(FetcherFactory.fetcher_names())}",
                fg="red",
            ),
            err=True,
        )
        return
    context = _build_context(db_path)
    try:
        with context.open_database() as db:
            db.add_valid_site(host.lower(), fetcher_name)
    except Exception as e:
        _report_error("allow-site", e)
        return
    click.echo(click.style(f"✓ {host} now accepted for the {fetcher_name} fetcher", fg="green"))
