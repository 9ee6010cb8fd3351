import re
from typing import List, Optional

from bs4 import BeautifulSoup, Tag

from story_archiver.core.exceptions import PageError
from story_archiver.core.models import Author, AuthorList, Chapter, Completed, Content, Story
from story_archiver.core.sources import StorySource
from story_archiver.utils.date_parsing import parse_rfc3339
from story_archiver.utils.logger import get_logger

from .base_fetcher import BaseFetcher, ChapterUpdate

logger = get_logger(__name__)

CHAPTER_REGEX = re.compile(r"/chapter/(\d+)")
PROFILE_REGEX = re.compile(r"/profile/(\d+)")

STATUS_LABELS = {
    "COMPLETED": Completed.COMPLETE,
    "ONGOING": Completed.INCOMPLETE,
    "HIATUS": Completed.INCOMPLETE,
    "STUB": Completed.INCOMPLETE,
    "DROPPED": Completed.INCOMPLETE,
}


class RoyalRoadFetcher(BaseFetcher):
    site_name = "Royal Road"
    base_url = "https://www.royalroad.com"

    def get_skeleton(self, source: StorySource) -> Story:
        url = source.to_url()
        soup = self._fetch_html_content(url)

        chapters: List[Content] = []
        for row in soup.select("#chapters tbody tr"):
            chapters.append(self._parse_chapter_row(row, source, url))

        return Story(
            name=self._get_title(soup, url),
            authors=AuthorList.single(self._get_author(soup, url)),
            url=url,
            source=source,
            chapters=chapters,
            description=self._get_description(soup),
            tags=[f"genre:{a.get_text().strip()}" for a in soup.select(".tags a") if a.get_text().strip()],
            completed=self._get_completed(soup),
        )

    def fill_skeleton(self, story: Story, allow_partial: bool = False) -> Story:
        return self._hydrate_from_chapter_pages(story, self._parse_chapter_page, allow_partial)

    def _get_title(self, soup: BeautifulSoup, url: str) -> str:
        title_tag = soup.select_one(".fic-title h1")
        if title_tag is not None:
            return title_tag.get_text().strip()
        # Fallback to meta property
        og_title_tag = soup.find("meta", property="og:title")
        if isinstance(og_title_tag, Tag) and og_title_tag.get("content"):
            return og_title_tag["content"].strip()
        raise PageError(self.site_name, "story title (.fic-title h1)", url)

    def _get_author(self, soup: BeautifulSoup, url: str) -> Author:
        author_link = soup.select_one('.fic-title [property="author"] a[href]')
        if author_link is None:
            author_link = soup.select_one('h4.font-white a[href*="/profile/"]')
        author_link = self._require(author_link, 'author name (.fic-title [property="author"] a)', url)
        match = PROFILE_REGEX.search(author_link["href"])
        if not match:
            raise PageError(self.site_name, "author profile link (/profile/<id>)", url)
        return Author(name=author_link.get_text().strip(), id=f"rr:{match.group(1)}")

    def _get_description(self, soup: BeautifulSoup) -> Optional[str]:
        description_div = soup.select_one("div.description div.hidden-content")
        if description_div is None:
            return None
        return description_div.decode_contents().strip() or None

    def _get_completed(self, soup: BeautifulSoup) -> Completed:
        for label in soup.select(".fiction-info span.label, .fic-header span.label"):
            status = STATUS_LABELS.get(label.get_text().strip().upper())
            if status is not None:
                return status
        return Completed.UNKNOWN

    def _parse_chapter_row(self, row: Tag, source: StorySource, url: str) -> Chapter:
        cells = row.find_all("td", recursive=False)
        # The dated cell carries data-content, the name cell does not
        date_cell = next((td for td in cells if td.has_attr("data-content")), None)
        name_cell = next((td for td in cells if not td.has_attr("data-content")), None)
        date_cell = self._require(date_cell, "chapter date cell (td[data-content])", url)
        name_cell = self._require(name_cell, "chapter name cell (td)", url)

        link = self._require(date_cell.find("a", href=True), "chapter link in the chapter table", url)
        href = link["href"]
        chapter_url = self.base_url + href if href.startswith("/") else href
        match = CHAPTER_REGEX.search(chapter_url)
        if not match:
            raise PageError(self.site_name, f"chapter id in chapter link {href}", url)

        name_link = self._require(name_cell.find("a"), "chapter name link", url)
        time_tag = self._require(link.find("time", attrs={"datetime": True}), "chapter post time (time[datetime])", url)

        return Chapter(
            id=f"{source.to_id()}:{match.group(1)}",
            name=name_link.get_text().strip(),
            url=chapter_url,
            date_posted=parse_rfc3339(time_tag["datetime"]),
        )

    def _parse_chapter_page(self, chapter: Chapter, page: BeautifulSoup) -> ChapterUpdate:
        chapter_div = page.find("div", class_="chapter-content")
        if chapter_div is None:
            logger.warning(f"Chapter content div (class 'chapter-content') not found for URL: {chapter.url}")
            raise PageError(self.site_name, "chapter text (.chapter-content)", chapter.url)
        return ChapterUpdate(text=self._render(chapter_div.decode_contents()))
