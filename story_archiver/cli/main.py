from typing import Optional, Tuple

import click

from story_archiver.cli.handlers import (
    add_handler,
    allow_site_handler,
    delete_handler,
    export_handler,
    list_handler,
    list_sources_handler,
    update_handler,
)


@click.group()
@click.option('--db', 'db_path', default=None, type=click.Path(dir_okay=False), help='Path to the archive database. Overrides STORY_ARCHIVE_DB and settings.ini.')
@click.pass_context
def archiver(ctx: click.Context, db_path: Optional[str]):
    """A CLI tool for archiving serialized fiction."""
    ctx.ensure_object(dict)
    ctx.obj['db_path'] = db_path


@archiver.command()
@click.argument('urls', nargs=-1, required=True)
@click.pass_context
def add(ctx: click.Context, urls: Tuple[str, ...]):
    """Archives the stories at URLS. Stories already archived are updated."""
    add_handler(urls=list(urls), db_path=ctx.obj['db_path'])


@archiver.command()
@click.argument('story', required=False, default=None)
@click.option('-f', '--force', is_flag=True, default=False, help='Re-fetch every chapter and replace the stored story.')
@click.pass_context
def update(ctx: click.Context, story: Optional[str], force: bool):
    """Fetches new chapters for STORY (name, id or author), or for the whole archive."""
    update_handler(story=story, force=force, db_path=ctx.obj['db_path'])


@archiver.command()
@click.argument('search')
@click.pass_context
def delete(ctx: click.Context, search: str):
    """Deletes the story matching SEARCH. Nothing happens unless exactly one story matches."""
    delete_handler(search=search, db_path=ctx.obj['db_path'])


@archiver.command()
@click.argument('story')
def export(story: str):
    """Exports STORY. Not implemented yet."""
    export_handler(story=story)


@archiver.command(name='list')
@click.pass_context
def list_command(ctx: click.Context):
    """Lists the archived stories."""
    list_handler(db_path=ctx.obj['db_path'])


@archiver.command(name='list-sources')
def list_sources():
    """Lists the supported sites."""
    list_sources_handler()


@archiver.command(name='allow-site')
@click.argument('host')
@click.argument('fetcher_name', metavar='FETCHER')
@click.pass_context
def allow_site(ctx: click.Context, host: str, fetcher_name: str):
    """Adds HOST to the list of sites `add` accepts, handled by FETCHER."""
    allow_site_handler(host=host, fetcher_name=fetcher_name, db_path=ctx.obj['db_path'])


if __name__ == '__main__':
    archiver()
