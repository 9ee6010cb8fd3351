import re
from typing import List

from bs4 import BeautifulSoup, Tag

from story_archiver.core.exceptions import PageError
from story_archiver.core.models import Author, AuthorList, Chapter, ChapterText, Completed, Content, Story
from story_archiver.core.sources import StorySource
from story_archiver.utils.date_parsing import parse_local_date
from story_archiver.utils.logger import get_logger

from .base_fetcher import BaseFetcher

logger = get_logger(__name__)

CHAPTER_REGEX = re.compile(r"/chapters/(\d+)")

# dd class -> tag category; anything not listed is kept as the bare tag text
TAG_CATEGORIES = {
    "warning": "warning",
    "category": "category",
    "fandom": "fandom",
    "relationship": "relationship",
    "character": "character",
}
SKIPPED_TAG_GROUPS = {"stats", "series", "collections"}


class AO3Fetcher(BaseFetcher):
    """
    Archive of Our Own. The full-work view already contains every chapter's
    text, so the skeleton comes back hydrated and filling it is a no-op.
    """

    site_name = "AO3"
    base_url = "https://archiveofourown.org"

    def get_skeleton(self, source: StorySource) -> Story:
        url = source.to_url()
        main_page = self._fetch_html_content(url, params=[("view_adult", "true"), ("view_full_work", "true")])
        navigate_url = f"{url}/navigate"
        navigate = self._fetch_html_content(navigate_url, params=[("view_adult", "true")])

        name = self._require(main_page.select_one(".title.heading"), "title (.title.heading)", url).get_text().strip()
        authors = self._get_authors(main_page, url)

        description = None
        summary = main_page.select_one(".summary > .userstuff")
        if summary is not None:
            description = summary.decode_contents().strip()

        chapters_div = self._require(main_page.find(id="chapters"), 'chapter section ([id="chapters"])', url)
        chapter_divs = chapters_div.find_all("div", class_="chapter", recursive=False)

        chapters: List[Content] = []
        if chapter_divs:
            for chapter_div in chapter_divs:
                chapters.append(self._parse_chapter(chapter_div, navigate, source, navigate_url))
        else:
            # Oneshot: no per-chapter wrappers, the work itself is the only chapter
            published = self._require(main_page.select_one("dd.published"), "published date (dd.published)", url)
            chapters.append(Chapter(
                id=f"{source.to_id()}:1",
                name=name,
                url=url,
                date_posted=parse_local_date(published.get_text()),
                text=ChapterText.hydrated(self._render(self._get_chapter_text(chapters_div, url))),
            ))

        return Story(
            name=name,
            authors=authors,
            url=url,
            source=source,
            chapters=chapters,
            description=description,
            tags=self._get_tags(main_page, url),
            completed=self._get_completed(main_page, url),
        )

    def fill_skeleton(self, story: Story, allow_partial: bool = False) -> Story:
        return story

    def get_story(self, source: StorySource, allow_partial: bool = False) -> Story:
        return self.get_skeleton(source)

    def _get_authors(self, page: BeautifulSoup, url: str) -> AuthorList:
        links = page.select('a[rel="author"][href]')
        if not links:
            raise PageError(self.site_name, 'author ([rel="author"][href])', url)
        authors = []
        for link in links:
            # /users/<user>/pseuds/<pseud> -> ao3:<user>:<pseud>
            parts = link["href"].replace("/users/", "", 1).split("/pseuds/", 1)
            authors.append(Author(name=link.get_text().strip(), id="ao3:" + ":".join(parts)))
        return AuthorList(authors)

    def _parse_chapter(self, chapter_div: Tag, navigate: BeautifulSoup, source: StorySource, navigate_url: str) -> Chapter:
        url = source.to_url()
        link = self._require(chapter_div.select_one(".title > a[href]"), "chapter link (.title [href])", url)
        href = link["href"]
        match = CHAPTER_REGEX.search(href)
        if not match:
            raise PageError(self.site_name, f"chapter id in chapter link {href}", url)

        full_title = self._require(chapter_div.select_one(".title"), "chapter name (.title)", url).get_text().strip()
        # "Chapter 3: The Name" -> "The Name"; untitled chapters keep "Chapter 3"
        name = full_title.split(":", 1)[1].strip() if ":" in full_title else full_title

        nav_link = self._require(navigate.find("a", href=href), f'a link matching "{href}" on the navigation page', navigate_url)
        date_span = self._require(
            nav_link.parent.find(class_="datetime") if nav_link.parent else None,
            f'datetime span for the link matching "{href}"',
            navigate_url,
        )

        chapter_url = self.base_url + href
        return Chapter(
            id=f"{source.to_id()}:{match.group(1)}",
            name=name,
            url=chapter_url,
            date_posted=parse_local_date(date_span.get_text()),
            text=ChapterText.hydrated(self._render(self._get_chapter_text(chapter_div, chapter_url))),
        )

    def _get_chapter_text(self, chapter: Tag, chapter_url: str) -> str:
        top_notes = chapter.find(id="notes")
        bottom_notes = chapter.select_one(".end.notes")
        body = self._require(
            chapter.find(class_="userstuff", recursive=False),
            'text area ([id="chapters"] > .userstuff)',
            chapter_url,
        )
        body_html = "".join(
            str(node) for node in body.children
            if not (isinstance(node, Tag) and node.get("id") == "work")
        )
        return "".join([
            top_notes.decode_contents() if top_notes is not None else "",
            body_html,
            bottom_notes.decode_contents() if bottom_notes is not None else "",
        ])

    def _get_tags(self, page: BeautifulSoup, url: str) -> List[str]:
        tag_box = self._require(page.select_one("dl.work.meta.group"), "tag box (dl.work.meta.group)", url)
        tags: List[str] = []
        for dd in tag_box.find_all("dd", recursive=False):
            classes = [c for c in dd.get("class", []) if c != "tags"]
            group = classes[0] if classes else ""
            if group in SKIPPED_TAG_GROUPS:
                continue
            if group == "language":
                tags.append(f"lang:{dd.get_text().strip()}")
                continue
            for a in dd.find_all("a"):
                text = a.get_text().strip()
                if group == "rating":
                    tags.append(f"rating:{text.lower()}")
                elif group in TAG_CATEGORIES:
                    tags.append(f"{TAG_CATEGORIES[group]}:{text}")
                else:
                    tags.append(text)
        return tags

    def _get_completed(self, page: BeautifulSoup, url: str) -> Completed:
        status = page.select_one(".stats > dt.status")
        if status is None:
            # No status stat means a oneshot, which is complete by definition
            return Completed.COMPLETE
        value = status.get_text().strip().lower()
        if value == "updated:":
            return Completed.INCOMPLETE
        if value == "completed:":
            return Completed.COMPLETE
        logger.warning(f"Encountered unexpected value {value} in story status tag (.stats > dt.status) for story at {url}")
        return Completed.UNKNOWN
