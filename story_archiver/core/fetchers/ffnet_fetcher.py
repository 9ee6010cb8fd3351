import datetime
import re
from typing import List, Optional

from bs4 import BeautifulSoup

from story_archiver.core.exceptions import PageError
from story_archiver.core.models import Author, AuthorList, Chapter, Completed, Content, Story
from story_archiver.core.sources import StorySource
from story_archiver.utils.date_parsing import parse_epoch_seconds

from .base_fetcher import BaseFetcher, ChapterUpdate

PROFILE_REGEX = re.compile(r"^/u/(\d+)")
# Chapter/word counts, dates and ids in the info line are not tags
INFO_SKIP_PREFIXES = ("chapters:", "words:", "reviews:", "favs:", "follows:", "updated:", "published:", "id:", "status:")
FFNET_GENRES = frozenset({
    "Adventure", "Angst", "Crime", "Drama", "Family", "Fantasy", "Friendship", "General",
    "Horror", "Humor", "Hurt/Comfort", "Mystery", "Parody", "Poetry", "Romance", "Sci-Fi",
    "Spiritual", "Supernatural", "Suspense", "Tragedy", "Western",
})


def split_genres(part: str) -> Optional[List[str]]:
    """Returns the genres in an info line segment, or None if it is not a genre list."""
    # Hurt/Comfort is the only genre containing the separator
    names = [g.strip() for g in part.replace("Hurt/Comfort", "Hurt|Comfort").split("/") if g.strip()]
    names = [g.replace("Hurt|Comfort", "Hurt/Comfort") for g in names]
    if not names or any(name not in FFNET_GENRES for name in names):
        return None
    return names


class FFNetFetcher(BaseFetcher):
    """FanFiction.net: one page per chapter, listed in the chapter select box."""

    site_name = "FFNet"
    base_url = "https://www.fanfiction.net"

    def get_skeleton(self, source: StorySource) -> Story:
        url = source.to_url()
        soup = self._fetch_html_content(url)

        name = self._require(soup.select_one("#profile_top > b"), "story title (#profile_top > b)", url).get_text().strip()
        author_link = self._require(
            soup.select_one('#profile_top > a[href^="/u/"]'),
            "author profile link (#profile_top > a[href^=/u/])",
            url,
        )
        match = PROFILE_REGEX.search(author_link["href"])
        if not match:
            raise PageError(self.site_name, f"author id in profile link {author_link['href']}", url)
        author = Author(name=author_link.get_text().strip(), id=f"ffnet:{match.group(1)}")

        date_tag = self._require(soup.find(attrs={"data-xutime": True}), "story date ([data-xutime])", url)
        # Updated date if present, else published; refined per chapter during hydration
        story_date = parse_epoch_seconds(date_tag["data-xutime"])

        chapters: List[Content] = []
        seen = set()
        for option in soup.select("#chap_select option"):
            number = (option.get("value") or "").strip()
            if not number or number in seen:
                continue
            seen.add(number)
            chapters.append(Chapter(
                id=f"{source.to_id()}:{number}",
                name=option.get_text().strip(),
                url=f"{self.base_url}/s/{source.site_id}/{number}",
                date_posted=story_date,
            ))
        if not chapters:
            chapters.append(Chapter(
                id=f"{source.to_id()}:1",
                name=name,
                url=f"{self.base_url}/s/{source.site_id}/1",
                date_posted=story_date,
            ))

        description = None
        description_div = soup.select_one("#profile_top > div.xcontrast_txt")
        if description_div is not None:
            description = description_div.decode_contents().strip() or None

        info = soup.select_one("#profile_top > span.xgray")
        info_text = info.get_text() if info is not None else ""

        return Story(
            name=name,
            authors=AuthorList.single(author),
            url=url,
            source=source,
            chapters=chapters,
            description=description,
            tags=self._get_tags(info_text),
            completed=self._get_completed(info_text),
        )

    def fill_skeleton(self, story: Story, allow_partial: bool = False) -> Story:
        return self._hydrate_from_chapter_pages(story, self._parse_chapter_page, allow_partial)

    def _get_tags(self, info_text: str) -> List[str]:
        """
        Turns the info line ("Rated: Fiction T - English - Adventure/Drama - ...")
        into tags. Character lists and anything after the counts are skipped.
        """
        parts = [p.strip() for p in info_text.split(" - ") if p.strip()]
        tags: List[str] = []
        for index, part in enumerate(parts):
            lower = part.lower()
            if lower.startswith(INFO_SKIP_PREFIXES):
                break
            if lower.startswith("rated:"):
                rating = part.split(":", 1)[1].replace("Fiction", "").strip()
                tags.append(f"rating:{rating.lower()}")
            elif index == 1:
                tags.append(f"lang:{part}")
            elif index == 2:
                genres = split_genres(part)
                if genres:
                    tags.extend(f"genre:{genre}" for genre in genres)
        return tags

    def _get_completed(self, info_text: str) -> Completed:
        match = re.search(r"Status:\s*(\w+)", info_text)
        if match is None:
            return Completed.INCOMPLETE
        return Completed.COMPLETE if match.group(1).lower() == "complete" else Completed.UNKNOWN

    def _parse_chapter_page(self, chapter: Chapter, page: BeautifulSoup) -> ChapterUpdate:
        body = self._require(page.find(id="storytext"), "chapter text (#storytext)", chapter.url)
        date_posted: Optional[datetime.datetime] = None
        date_tag = page.find(attrs={"data-xutime": True})
        if date_tag is not None:
            date_posted = parse_epoch_seconds(date_tag["data-xutime"])
        return ChapterUpdate(text=self._render(body.decode_contents()), date_posted=date_posted)
