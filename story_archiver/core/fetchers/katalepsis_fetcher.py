import re
from typing import List, Optional

from bs4 import BeautifulSoup, NavigableString, Tag

from story_archiver.core.exceptions import PageError
from story_archiver.core.models import Author, AuthorList, Chapter, Completed, Content, Section, Story
from story_archiver.core.sources import StorySource
from story_archiver.utils.date_parsing import epoch, parse_rfc3339
from story_archiver.utils.logger import get_logger

from .base_fetcher import BaseFetcher, ChapterUpdate

logger = get_logger(__name__)

ARC_REGEX = re.compile(r"^\(?\s*Arc\s+(\d+)\s*:?\s*(.*?)\s*\)?$", re.IGNORECASE)
NAV_MARKERS = (">Previous Chapter<", ">Next Chapter<")
SCENE_BREAK = '<span align="center">* * *</span>'


def _is_nav_paragraph(html: str) -> bool:
    return any(marker in html for marker in NAV_MARKERS)


class KatalepsisFetcher(BaseFetcher):
    """
    Katalepsis, a single-work WordPress serial. Arcs become sections, the
    chapters are listed in the archive widget of the sidebar.
    """

    site_name = "Katalepsis"

    def get_skeleton(self, source: StorySource) -> Story:
        url = source.to_url()
        main_page = self._fetch_html_content(url)

        description = "".join(
            p.decode_contents() for p in main_page.select(".entry-content > p")[:3]
        ) or None

        archive = self._find_archive(main_page, url)
        chapters: List[Content] = []
        for arc_ul in archive.find_all("ul", recursive=False):
            for arc_li in arc_ul.find_all("li", recursive=False):
                section = self._parse_arc(arc_li, source, url)
                if section is not None:
                    chapters.append(section)

        return Story(
            name="Katalepsis",
            authors=AuthorList.single(Author(name="HY", id=f"{source.prefix}:HY")),
            url=url,
            source=source,
            chapters=chapters,
            description=description,
            tags=[],
            completed=Completed.INCOMPLETE,
        )

    def fill_skeleton(self, story: Story, allow_partial: bool = False) -> Story:
        return self._hydrate_from_chapter_pages(story, self._parse_chapter_page, allow_partial)

    def _find_archive(self, page: BeautifulSoup, url: str) -> Tag:
        for aside in page.select("#secondary > aside"):
            heading = aside.find(True, recursive=False)
            if heading is not None and heading.name == "h3" and heading.get_text().strip() == "Archive":
                return self._require(
                    aside.find(class_="textwidget", recursive=False),
                    "post archive list (.textwidget)",
                    url,
                )
        raise PageError(self.site_name, "post archive in right-hand panel (#secondary > aside h3 'Archive')", url)

    def _parse_arc(self, arc_li: Tag, source: StorySource, url: str) -> Optional[Section]:
        label = next(
            (str(child).strip() for child in arc_li.children
             if isinstance(child, NavigableString) and str(child).strip()),
            None,
        )
        match = ARC_REGEX.match(label) if label else None
        if not match:
            raise PageError(self.site_name, f"arc name in archive entry {label!r}", url)
        arc_num, arc_title = match.group(1), match.group(2).strip()
        arc_name = f"Arc {arc_num}: {arc_title}" if arc_title else f"Arc {arc_num}"

        chapter_list = self._require(arc_li.find("ul", recursive=False), f"chapter list (<ul>) for {arc_name}", url)
        chapters: List[Content] = []
        for chapter_li in chapter_list.find_all("li", recursive=False):
            link = chapter_li.find(True, recursive=False)
            if link is None or link.name != "a":
                continue
            number = link.get_text().strip()
            parts = number.split(".")
            if len(parts) < 2 or not parts[1]:
                raise PageError(self.site_name, f"chapter number of the form X.Y (got {number!r})", url)
            chapters.append(Chapter(
                id=f"{source.to_id()}:{arc_num}:{parts[1]}",
                name=f"{arc_name} - {number}",
                url=self._require_attr(link, "href", f"link for chapter {number}", url),
                date_posted=epoch(),
            ))

        if not chapters:
            logger.warning(f"Skipping {arc_name}: the archive lists no chapters for it yet.")
            return None

        return Section(
            id=f"{source.to_id()}:{arc_num}",
            name=arc_name,
            chapters=chapters,
        )

    def _parse_chapter_page(self, chapter: Chapter, page: BeautifulSoup) -> ChapterUpdate:
        parts: List[str] = []

        warnings = page.select_one(".entry-content > details > p")
        if warnings is not None and not warnings.get_text().strip().startswith("None"):
            parts.append(f"<p><b>Content Warnings:</b><br>{warnings.decode_contents().strip()}</p>")

        paragraphs = [p.decode_contents() for p in page.select(".entry-content > p")]
        nav_indexes = [i for i, html in enumerate(paragraphs) if _is_nav_paragraph(html)]
        if len(nav_indexes) < 2:
            raise PageError(self.site_name, "previous/next chapter links around the chapter body", chapter.url)
        start, end = nav_indexes[0], nav_indexes[-1]

        for html in paragraphs[start + 1:end]:
            if _is_nav_paragraph(html):
                continue
            parts.append(f"<p>{html.replace('==', SCENE_BREAK)}</p>")

        notes = [html for html in paragraphs[end + 1:] if not _is_nav_paragraph(html)]
        if notes:
            parts.append("<p><b>Author's Notes:</b></p>")
            parts.extend(f"<p>{html}</p>" for html in notes)

        date_tag = self._require(page.select_one(".entry-date[datetime]"), "chapter posted-on date (.entry-date[datetime])", chapter.url)
        return ChapterUpdate(
            text=self._render("".join(parts)),
            date_posted=parse_rfc3339(date_tag["datetime"]),
        )
