import datetime
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import requests
from bs4 import BeautifulSoup, Tag

from story_archiver.core.client import QueryParams, RateLimitedClient, get_client
from story_archiver.core.exceptions import ArchiveError, HydrationError, PageError, RequestError
from story_archiver.core.models import Chapter, Story
from story_archiver.core.parsers.html_converter import HTMLConverter, TextFormat
from story_archiver.core.sources import StorySource
from story_archiver.utils.logger import get_logger

logger = get_logger(__name__)

# Parsing is I/O-adjacent, so the pool is sized generously rather than per core.
PARSE_WORKERS = 32


@dataclass
class ChapterUpdate:
    """What parsing a chapter page yields; applied to the chapter only once the whole batch succeeds."""
    text: str
    date_posted: Optional[datetime.datetime] = None


ChapterPageParser = Callable[[Chapter, BeautifulSoup], ChapterUpdate]


class BaseFetcher(ABC):
    """
    Site adapter. Turns a site's pages into a Story in two phases:
    a cheap skeleton listing every section/chapter, then hydration of the
    chapter bodies.
    """

    site_name = "Base"

    def __init__(
        self,
        text_format: TextFormat = TextFormat.HTML,
        client: Optional[RateLimitedClient] = None,
        converter: Optional[HTMLConverter] = None,
    ):
        self.text_format = text_format
        self._client = client
        self.converter = converter or HTMLConverter()

    @property
    def client(self) -> RateLimitedClient:
        return self._client or get_client()

    @abstractmethod
    def get_skeleton(self, source: StorySource) -> Story:
        """
        Fetches the pages needed to list every section and chapter with its
        final id, name, URL and date. Chapter bodies may be left dehydrated.
        """
        pass

    @abstractmethod
    def fill_skeleton(self, story: Story, allow_partial: bool = False) -> Story:
        """
        Hydrates every dehydrated chapter of `story` in place and returns it.

        Unless `allow_partial` is set, a single failure fails the whole batch
        and no chapter is modified.
        """
        pass

    def get_story(self, source: StorySource, allow_partial: bool = False) -> Story:
        story = self.get_skeleton(source)
        return self.fill_skeleton(story, allow_partial=allow_partial)

    # --- helpers shared by the site fetchers ---

    def _fetch_text(self, url: str, params: Optional[QueryParams] = None) -> str:
        logger.info(f"Fetching HTML content from URL: {url}")
        try:
            if params is None:
                response = self.client.get(url)
            else:
                response = self.client.get_with_query(url, params)
            response.raise_for_status()
            return response.text
        except requests.exceptions.HTTPError as http_err:
            status = http_err.response.status_code if http_err.response is not None else None
            logger.error(f"HTTP error occurred while fetching {url}: {http_err}")
            raise RequestError(url, str(http_err), status_code=status) from http_err
        except requests.exceptions.RequestException as req_err:
            logger.error(f"Request exception occurred while fetching {url}: {req_err}")
            raise RequestError(url, str(req_err)) from req_err

    def _fetch_html_content(self, url: str, params: Optional[QueryParams] = None) -> BeautifulSoup:
        return BeautifulSoup(self._fetch_text(url, params), 'html.parser')

    def _fetch_pages(self, urls: Sequence[str]) -> Tuple[Dict[str, str], List[Tuple[str, Exception]]]:
        """
        Fetches all `urls` concurrently, one worker per URL.

        Returns the page bodies by URL and the (url, error) pairs that failed.
        """
        pages: Dict[str, str] = {}
        failures: List[Tuple[str, Exception]] = []
        unique_urls = list(dict.fromkeys(urls))
        if not unique_urls:
            return pages, failures

        with ThreadPoolExecutor(max_workers=len(unique_urls)) as executor:
            futures = [(url, executor.submit(self._fetch_text, url)) for url in unique_urls]
            for url, future in futures:
                try:
                    pages[url] = future.result()
                except ArchiveError as e:
                    failures.append((url, e))
        return pages, failures

    def _hydrate_from_chapter_pages(
        self,
        story: Story,
        parse_page: ChapterPageParser,
        allow_partial: bool = False,
    ) -> Story:
        """Hydration for sites where every chapter lives on its own page."""
        chapters = [c for c in story.iter_chapters() if not c.text.is_hydrated]
        if not chapters:
            return story

        pages, failures = self._fetch_pages([c.url for c in chapters])
        fetched = [c for c in chapters if c.url in pages]

        def parse(chapter: Chapter) -> ChapterUpdate:
            return parse_page(chapter, BeautifulSoup(pages[chapter.url], 'html.parser'))

        updates, parse_failures = self._run_parsers(fetched, parse)
        failures.extend(parse_failures)
        self._apply_updates(story, updates, failures, allow_partial)
        return story

    def _run_parsers(
        self,
        chapters: Sequence[Chapter],
        parse: Callable[[Chapter], ChapterUpdate],
    ) -> Tuple[List[Tuple[Chapter, ChapterUpdate]], List[Tuple[str, Exception]]]:
        updates: List[Tuple[Chapter, ChapterUpdate]] = []
        failures: List[Tuple[str, Exception]] = []
        if not chapters:
            return updates, failures

        with ThreadPoolExecutor(max_workers=PARSE_WORKERS) as executor:
            futures = [(chapter, executor.submit(parse, chapter)) for chapter in chapters]
            for chapter, future in futures:
                try:
                    updates.append((chapter, future.result()))
                except ArchiveError as e:
                    failures.append((chapter.url, e))
        return updates, failures

    def _apply_updates(
        self,
        story: Story,
        updates: List[Tuple[Chapter, ChapterUpdate]],
        failures: List[Tuple[str, Exception]],
        allow_partial: bool,
    ) -> None:
        if failures:
            if not allow_partial:
                raise HydrationError(failures)
            for url, error in failures:
                logger.warning(f"Skipping chapter at {url} for story {story.id}: {error}")

        for chapter, update in updates:
            chapter.text.hydrate(update.text)
            if update.date_posted is not None:
                chapter.date_posted = update.date_posted
        logger.info(f"Hydrated {len(updates)} chapter(s) for story {story.id} ({len(failures)} failed).")

    def _render(self, html: str) -> str:
        return self.converter.convert(html, self.text_format)

    def _require(self, node: Optional[Tag], element: str, url: str) -> Tag:
        """Returns `node` or raises a PageError naming the missing `element`."""
        if node is None:
            raise PageError(self.site_name, element, url)
        return node

    def _require_attr(self, node: Tag, attr: str, element: str, url: str) -> str:
        value = node.get(attr)
        if isinstance(value, list):
            value = value[0] if value else None
        if not value:
            raise PageError(self.site_name, element, url)
        return value
