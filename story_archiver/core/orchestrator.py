"""
Synchronization between the sites and the archive database.

`add_story` archives a story the first time it is seen, `update_story` adds
only the chapters that appeared since the last fetch (or replaces the whole
story when forced), and `update_archive` does that for every stored story.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import urlparse

from story_archiver.utils.logger import get_logger

from .content_tree import count_chapters, new_content_ids, new_content_roots, prune_dehydrated
from .exceptions import AmbiguousStoryError, BadSourceError, NoIdInSourceError, StoryNotExistsError
from .fetchers.base_fetcher import BaseFetcher
from .fetchers.fetcher_factory import FetcherFactory
from .models import ListedStory, Story
from .sources import StorySource
from .storage.database import Database

ProgressCallback = Callable[[Union[str, Dict[str, Any]]], None]
FetcherProvider = Callable[[StorySource], BaseFetcher]

logger = get_logger(__name__)

ACTION_ADDED = "added"
ACTION_UPDATED = "updated"
ACTION_REFRESHED = "refreshed"
ACTION_UNCHANGED = "unchanged"


@dataclass
class StoryResult:
    story_id: str
    name: str
    action: str
    chapters_gained: int = 0


@dataclass
class UpdateSummary:
    chapters_gained: int = 0
    stories_updated: int = 0
    stories_failed: int = 0
    failures: List[Tuple[str, Exception]] = field(default_factory=list)


def _notify(progress_callback: Optional[ProgressCallback], status: str, message: str) -> None:
    if progress_callback:
        try:
            progress_callback({"status": status, "message": message})
        except Exception as e:
            logger.error(f"Progress callback failed: {e}", exc_info=True)


def _provider(fetcher_provider: Optional[FetcherProvider]) -> FetcherProvider:
    return fetcher_provider or FetcherFactory.get_fetcher


def _host(url: str) -> str:
    if "://" not in url:
        url = "https://" + url
    return (urlparse(url).hostname or "").lower()


def check_site_allowed(db: Database, url: str, source: StorySource) -> None:
    """
    Enforces the valid_sites allow-list, if one has been set up.

    An empty list allows every supported site.
    """
    if not db.has_valid_sites():
        return
    host = _host(url)
    candidates = [host]
    if host.startswith("www."):
        candidates.append(host[len("www."):])
    fetcher_name = source.kind.site.fetcher
    for candidate in candidates:
        if db.get_parser_for_site(candidate) == fetcher_name:
            return
    logger.warning(f"Host {host} is not in the valid_sites list for fetcher {fetcher_name}.")
    raise BadSourceError(url)


def _chapter_ids(story: Story) -> set:
    return {chapter.id for chapter in story.iter_chapters()}


def add_story(
    db: Database,
    url: str,
    fetcher_provider: Optional[FetcherProvider] = None,
    allow_partial: bool = False,
    progress_callback: Optional[ProgressCallback] = None,
) -> StoryResult:
    """
    Archives the story at `url`. A story that is already stored is updated instead.
    """
    source = StorySource.from_url(url)
    check_site_allowed(db, url, source)
    story_id = source.to_id()

    if db.story_exists_with_id(story_id):
        logger.info(f"Story {story_id} is already archived. Updating it instead.")
        _notify(progress_callback, "info", f"{story_id} is already archived; checking for new chapters.")
        return update_story(db, source, fetcher_provider=fetcher_provider, allow_partial=allow_partial,
                            progress_callback=progress_callback)

    _notify(progress_callback, "info", f"Fetching {source.to_url()}...")
    fetcher = _provider(fetcher_provider)(source)
    story = fetcher.get_story(source, allow_partial=allow_partial)
    if allow_partial:
        story.chapters = prune_dehydrated(story.chapters)
    db.save_story(story)

    gained = story.num_chapters()
    logger.info(f"Added story {story_id} ('{story.name}') with {gained} chapter(s).")
    _notify(progress_callback, "info", f"Added '{story.name}' with {gained} chapter(s).")
    return StoryResult(story_id=story_id, name=story.name, action=ACTION_ADDED, chapters_gained=gained)


def add_stories(
    db: Database,
    urls: Sequence[str],
    fetcher_provider: Optional[FetcherProvider] = None,
    allow_partial: bool = False,
    progress_callback: Optional[ProgressCallback] = None,
) -> List[Tuple[str, Union[StoryResult, Exception]]]:
    """Adds each URL on its own; a failure for one URL does not stop the others."""
    results: List[Tuple[str, Union[StoryResult, Exception]]] = []
    for url in urls:
        try:
            results.append((url, add_story(db, url, fetcher_provider, allow_partial, progress_callback)))
        except Exception as e:
            logger.error(f"Failed to add story at {url}: {e}", exc_info=True)
            _notify(progress_callback, "error", f"Failed to add {url}: {e}")
            results.append((url, e))
    return results


def update_story(
    db: Database,
    source: StorySource,
    force_refresh: bool = False,
    fetcher_provider: Optional[FetcherProvider] = None,
    allow_partial: bool = False,
    progress_callback: Optional[ProgressCallback] = None,
) -> StoryResult:
    """
    Brings a stored story up to date.

    Without `force_refresh` only chapters and sections missing from the
    database are fetched and inserted; the stored rows are left untouched.
    With it the whole story is fetched again and replaces the stored copy.

    Raises:
        StoryNotExistsError: the story was never added.
    """
    story_id = source.to_id()
    existing = db.get_story_by_id(story_id)
    if existing is None:
        raise StoryNotExistsError(source.to_url())

    fetcher = _provider(fetcher_provider)(source)

    if force_refresh:
        _notify(progress_callback, "info", f"Re-fetching all of '{existing.name}'...")
        story = fetcher.get_story(source, allow_partial=allow_partial)
        if allow_partial:
            story.chapters = prune_dehydrated(story.chapters)
        db.save_story(story, overwrite=True)
        gained = len(_chapter_ids(story) - _chapter_ids(existing))
        logger.info(f"Refreshed story {story_id}: {story.num_chapters()} chapter(s), {gained} new.")
        return StoryResult(story_id=story_id, name=story.name, action=ACTION_REFRESHED, chapters_gained=gained)

    skeleton = fetcher.get_skeleton(source)
    new_ids = new_content_ids(skeleton.chapters, existing.chapters)
    if not new_ids:
        logger.info(f"No new content for story {story_id}.")
        _notify(progress_callback, "info", f"'{existing.name}' is up to date.")
        return StoryResult(story_id=story_id, name=existing.name, action=ACTION_UNCHANGED)

    roots = new_content_roots(skeleton.chapters, new_ids)
    logger.info(f"Found {len(new_ids)} new item(s) for story {story_id} under {len(roots)} insertion point(s).")
    _notify(progress_callback, "info", f"Fetching {len(new_ids)} new item(s) for '{existing.name}'...")

    # Hydrate only the new subtrees; the nodes are shared with the skeleton
    pending = Story(
        name=skeleton.name,
        authors=skeleton.authors,
        url=skeleton.url,
        source=skeleton.source,
        chapters=[node for node, _ in roots],
        description=skeleton.description,
        tags=skeleton.tags,
        completed=skeleton.completed,
    )
    fetcher.fill_skeleton(pending, allow_partial=allow_partial)

    items = []
    for node, parent in roots:
        kept = prune_dehydrated([node]) if allow_partial else [node]
        items.extend((content, parent.id if parent is not None else None) for content in kept)
    db.save_contents(story_id, items)

    gained = count_chapters(content for content, _ in items)
    logger.info(f"Updated story {story_id} with {gained} new chapter(s).")
    _notify(progress_callback, "info", f"Added {gained} chapter(s) to '{existing.name}'.")
    return StoryResult(story_id=story_id, name=existing.name, action=ACTION_UPDATED, chapters_gained=gained)


def update_archive(
    db: Database,
    force_refresh: bool = False,
    fetcher_provider: Optional[FetcherProvider] = None,
    allow_partial: bool = False,
    max_workers: int = 4,
    progress_callback: Optional[ProgressCallback] = None,
) -> UpdateSummary:
    """
    Updates every stored story independently.

    A failing story is logged and counted; it never stops the others.
    """
    summary = UpdateSummary()
    story_ids = [listed.id for listed in db.get_all_stories()]
    if not story_ids:
        return summary

    def run(story_id: str) -> StoryResult:
        return update_story(db, StorySource.from_id(story_id), force_refresh=force_refresh,
                            fetcher_provider=fetcher_provider, allow_partial=allow_partial,
                            progress_callback=progress_callback)

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(story_ids)))) as executor:
        futures = [(story_id, executor.submit(run, story_id)) for story_id in story_ids]
        for story_id, future in futures:
            try:
                result = future.result()
            except Exception as e:
                logger.error(f"Failed to update story {story_id}: {e}", exc_info=True)
                summary.stories_failed += 1
                summary.failures.append((story_id, e))
                continue
            summary.chapters_gained += result.chapters_gained
            if result.action != ACTION_UNCHANGED:
                summary.stories_updated += 1

    logger.info(
        f"Archive update finished: {summary.chapters_gained} chapter(s) gained, "
        f"{summary.stories_updated} story(ies) updated, {summary.stories_failed} failed."
    )
    return summary


def resolve_story(db: Database, search: str) -> str:
    """
    Finds the single stored story meant by `search`: a story URL, an exact id,
    or a substring of a story or author name.

    Raises:
        StoryNotExistsError: nothing matches.
        AmbiguousStoryError: more than one story matches.
    """
    try:
        story_id = StorySource.from_url(search).to_id()
        if db.story_exists_with_id(story_id):
            return story_id
    except (BadSourceError, NoIdInSourceError):
        # Not a story URL; fall back to the name search
        pass

    matches = db.fuzzy_get_story(search)
    if not matches:
        raise StoryNotExistsError(search)
    if len(matches) > 1:
        raise AmbiguousStoryError(search, matches)
    return matches[0]


def delete_story(db: Database, search: str) -> str:
    """Deletes the one story matching `search` and returns its id."""
    story_id = resolve_story(db, search)
    db.delete_story_by_id(story_id)
    return story_id


def list_stories(db: Database) -> List[ListedStory]:
    return db.get_all_stories()
