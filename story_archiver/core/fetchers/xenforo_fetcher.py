import re
from typing import Dict, List

from bs4 import BeautifulSoup, NavigableString, Tag

from story_archiver.core.exceptions import ParseIntError, PageError
from story_archiver.core.models import Author, AuthorList, Chapter, Completed, Content, Story
from story_archiver.core.sources import StorySource
from story_archiver.utils.date_parsing import parse_offset_timestamp
from story_archiver.utils.logger import get_logger

from .base_fetcher import BaseFetcher, ChapterUpdate

logger = get_logger(__name__)

CHAPTER_REGEX = re.compile(r"#post-(\d+)")
AUTHOR_REGEX = re.compile(r"/members/(?:.+\.)?(\d+)")

PROGRESS_VALUES = {
    "complete": Completed.COMPLETE,
    "ongoing": Completed.INCOMPLETE,
}


class XenforoFetcher(BaseFetcher):
    """
    XenForo forums (SpaceBattles, Sufficient Velocity, Questionable Questing).

    Threadmarks are the chapters. Their text is read from the thread's reader
    mode, which lists every threadmarked post across a few pages.
    """

    site_name = "Xenforo"

    def get_skeleton(self, source: StorySource) -> Story:
        url = source.to_url()
        threadmarks_url = f"{url}/threadmarks"
        document = self._fetch_html_content(threadmarks_url)

        header = self._require(
            document.find(class_="threadmarkListingHeader-name"),
            "title (.threadmarkListingHeader-name)",
            threadmarks_url,
        )
        title_text = next(
            (str(child) for child in header.children if isinstance(child, NavigableString) and str(child).strip()),
            None,
        )
        if title_text is None:
            raise PageError(self.site_name, "text in title (.threadmarkListingHeader-name)", threadmarks_url)
        name = title_text.replace(" - Threadmarks", "").strip()

        authors = self._get_authors(document, source, threadmarks_url)

        chapters: List[Content] = []
        for node in document.find_all(class_="structItem--threadmark"):
            chapters.append(self._parse_threadmark(node, authors, source, threadmarks_url))

        return Story(
            name=name,
            authors=authors,
            url=url,
            source=source,
            chapters=chapters,
            description=None,
            tags=[],
            completed=self._get_completed(document),
        )

    def fill_skeleton(self, story: Story, allow_partial: bool = False) -> Story:
        chapters = [c for c in story.iter_chapters() if not c.text.is_hydrated]
        if not chapters:
            return story

        reader_url = f"{story.source.to_url()}/reader"
        first_page = self._fetch_text(reader_url)
        last_page = self._get_last_page(BeautifulSoup(first_page, 'html.parser'), reader_url)
        logger.info(f"Reader mode for story {story.id} spans {last_page} page(s).")

        page_urls = [f"{reader_url}/page-{num}" for num in range(2, last_page + 1)]
        pages, failures = self._fetch_pages(page_urls)
        posts = self._index_posts([first_page] + [pages[u] for u in page_urls if u in pages])

        def parse(chapter: Chapter) -> ChapterUpdate:
            post_id = chapter.site_chapter_id
            body = posts.get(post_id)
            if body is None:
                raise PageError(self.site_name, f"a post for chapter with id {post_id} (#js-post-{post_id} .bbWrapper)", reader_url)
            return ChapterUpdate(text=self._render(body))

        updates, parse_failures = self._run_parsers(chapters, parse)
        failures.extend(parse_failures)
        self._apply_updates(story, updates, failures, allow_partial)
        return story

    def _get_authors(self, document: BeautifulSoup, source: StorySource, url: str) -> AuthorList:
        authors: List[Author] = []
        for node in document.find_all(class_="username"):
            name = node.get_text().strip()
            href = self._require_attr(node, "href", f"user profile link (.username[href]) for user {name}", url)
            match = AUTHOR_REGEX.search(href)
            if not match:
                raise PageError(self.site_name, f"author id in author link {href}", url)
            authors.append(Author(name=name, id=f"{source.prefix}:{match.group(1)}"))
        if not authors:
            raise PageError(self.site_name, "thread author (.username)", url)
        return AuthorList(authors)

    def _get_completed(self, document: BeautifulSoup) -> Completed:
        for pairs in document.find_all(class_="pairs--rows"):
            dt = pairs.find("dt")
            if dt is None or dt.get_text().strip().lower() != "index progress":
                continue
            dd = pairs.find("dd")
            value = dd.get_text().strip().lower() if dd is not None else ""
            return PROGRESS_VALUES.get(value, Completed.UNKNOWN)
        return Completed.UNKNOWN

    def _parse_threadmark(self, node: Tag, authors: AuthorList, source: StorySource, url: str) -> Chapter:
        title_container = self._require(
            node.find(class_="structItem-title"),
            "threadmark title container (.structItem-title)",
            url,
        )
        link = self._require(title_container.find("a", href=True), "threadmark link (.structItem-title a)", url)
        match = CHAPTER_REGEX.search(link["href"])
        if not match:
            raise PageError(self.site_name, f"chapter id in chapter link {link['href']}", url)
        post_id = match.group(1)

        time_tag = self._require(
            node.find("time", attrs={"datetime": True}),
            "threadmark date posted (.structItem--threadmark time[datetime])",
            url,
        )
        author_name = self._require_attr(
            node, "data-content-author", "author name (.structItem--threadmark[data-content-author])", url
        )
        author = authors.find_by_name(author_name)
        if author is None:
            raise PageError(self.site_name, f"an author (.username) matching {author_name}", url)

        return Chapter(
            id=f"{source.to_id()}:{post_id}",
            name=link.get_text().strip(),
            url=f"{source.to_base_url()}/posts/{post_id}",
            date_posted=parse_offset_timestamp(time_tag["datetime"]),
            author=author,
        )

    def _get_last_page(self, first_page: BeautifulSoup, url: str) -> int:
        page_nav = first_page.find(class_="pageNav-main")
        if page_nav is None:
            return 1
        links = page_nav.find_all("a", href=True)
        if not links:
            raise PageError(self.site_name, "pageNav (.pageNav-main a[href])", url)
        text = links[-1].get_text().strip()
        try:
            return int(text)
        except ValueError:
            raise ParseIntError(f"Last reader page number ({text}) on {url} is not a number")

    def _index_posts(self, pages: List[str]) -> Dict[str, str]:
        """Maps post id to the inner HTML of the post body for every post on `pages`."""
        posts: Dict[str, str] = {}
        for page in pages:
            soup = BeautifulSoup(page, 'html.parser')
            for post in soup.find_all(id=re.compile(r"^js-post-\d+$")):
                body = post.find(class_="bbWrapper")
                if body is not None:
                    posts[post["id"][len("js-post-"):]] = body.decode_contents()
        return posts
