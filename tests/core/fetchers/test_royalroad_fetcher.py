import datetime
import logging
import unittest
from unittest.mock import patch

from bs4 import BeautifulSoup

from story_archiver.core.exceptions import HydrationError, PageError
from story_archiver.core.fetchers.royalroad_fetcher import RoyalRoadFetcher
from story_archiver.core.models import Completed
from story_archiver.core.parsers.html_converter import TextFormat
from story_archiver.core.sources import StorySource

# Suppress warnings from the fetcher during tests (e.g., "Chapter content div not found")
logging.getLogger("story_archiver.core.fetchers.royalroad_fetcher").setLevel(logging.ERROR)

STORY_URL = "https://www.royalroad.com/fiction/117255"

STORY_PAGE_HTML = """
<html><head><meta property="og:title" content="REND (og)"></head><body>
<div class="fic-header">
  <div class="fic-title">
    <h1>REND</h1>
    <h4><span property="author"><a href="/profile/12345">Temple</a></span></h4>
  </div>
</div>
<div class="fiction-info">
  <span class="label label-default">Original</span>
  <span class="label label-default">ONGOING</span>
  <div class="description"><div class="hidden-content"><p>Erind Hartwell: dutiful daughter, law student, psychopath.</p></div></div>
  <span class="tags"><a class="label">Thriller</a><a class="label">Psychological</a></span>
</div>
<table id="chapters"><tbody>
  <tr class="chapter-row">
    <td><a href="/fiction/117255/rend/chapter/2291798/11-crappy-monday">1.1 Crappy Monday</a></td>
    <td data-content="0"><a href="/fiction/117255/rend/chapter/2291798/11-crappy-monday"><time datetime="2025-05-10T04:00:00.0000000Z">3 weeks ago</time></a></td>
  </tr>
  <tr class="chapter-row">
    <td><a href="/fiction/117255/rend/chapter/2322033/41-a-memorial-to-remember">4.1 A Memorial To Remember</a></td>
    <td data-content="1"><a href="/fiction/117255/rend/chapter/2322033/41-a-memorial-to-remember"><time datetime="2025-06-01T04:00:00.1234567Z">1 day ago</time></a></td>
  </tr>
</tbody></table>
</body></html>
"""

FIRST_CHAPTER_URL = "https://www.royalroad.com/fiction/117255/rend/chapter/2291798/11-crappy-monday"
SECOND_CHAPTER_URL = "https://www.royalroad.com/fiction/117255/rend/chapter/2322033/41-a-memorial-to-remember"

CHAPTER_PAGES = {
    FIRST_CHAPTER_URL: """
        <html><body>
            <div class='other-stuff'>Header</div>
            <div class='chapter-content'><p>Test chapter text.</p><script>track()</script></div>
        </body></html>""",
    SECOND_CHAPTER_URL: """
        <html><body>
            <div class='chapter-content'><p><em>Second</em> chapter.</p></div>
        </body></html>""",
}


class TestRoyalRoadFetcher(unittest.TestCase):

    def setUp(self):
        self.fetcher = RoyalRoadFetcher()
        self.source = StorySource.from_url(STORY_URL)

    @patch.object(RoyalRoadFetcher, '_fetch_html_content')
    def test_get_skeleton(self, mock_fetch_html_content):
        mock_fetch_html_content.return_value = BeautifulSoup(STORY_PAGE_HTML, 'html.parser')

        story = self.fetcher.get_skeleton(self.source)

        mock_fetch_html_content.assert_called_once_with(STORY_URL)
        self.assertEqual(story.name, "REND")
        self.assertEqual(story.authors.primary.name, "Temple")
        self.assertEqual(story.authors.primary.id, "rr:12345")
        self.assertEqual(story.url, STORY_URL)
        self.assertIn("Erind Hartwell", story.description)
        self.assertEqual(story.tags, ["genre:Thriller", "genre:Psychological"])
        self.assertEqual(story.completed, Completed.INCOMPLETE)

        chapters = list(story.iter_chapters())
        self.assertEqual([c.id for c in chapters], ["rr:117255:2291798", "rr:117255:2322033"])
        self.assertEqual(chapters[0].name, "1.1 Crappy Monday")
        self.assertEqual(chapters[0].url, FIRST_CHAPTER_URL)
        self.assertEqual(chapters[0].date_posted, datetime.datetime(2025, 5, 10, 4, 0, tzinfo=datetime.timezone.utc))
        self.assertEqual(chapters[1].date_posted.microsecond, 123456)
        self.assertFalse(any(c.text.is_hydrated for c in chapters))

    @patch.object(RoyalRoadFetcher, '_fetch_html_content')
    def test_title_falls_back_to_og_title(self, mock_fetch_html_content):
        html = STORY_PAGE_HTML.replace("<h1>REND</h1>", "")
        mock_fetch_html_content.return_value = BeautifulSoup(html, 'html.parser')

        self.assertEqual(self.fetcher.get_skeleton(self.source).name, "REND (og)")

    @patch.object(RoyalRoadFetcher, '_fetch_html_content')
    def test_completed_label(self, mock_fetch_html_content):
        html = STORY_PAGE_HTML.replace(">ONGOING<", ">COMPLETED<")
        mock_fetch_html_content.return_value = BeautifulSoup(html, 'html.parser')

        self.assertEqual(self.fetcher.get_skeleton(self.source).completed, Completed.COMPLETE)

    @patch.object(RoyalRoadFetcher, '_fetch_html_content')
    def test_missing_author_raises_page_error(self, mock_fetch_html_content):
        html = STORY_PAGE_HTML.replace('<span property="author"><a href="/profile/12345">Temple</a></span>', "")
        mock_fetch_html_content.return_value = BeautifulSoup(html, 'html.parser')

        with self.assertRaises(PageError):
            self.fetcher.get_skeleton(self.source)

    @patch.object(RoyalRoadFetcher, '_fetch_text')
    @patch.object(RoyalRoadFetcher, '_fetch_html_content')
    def test_get_story_hydrates_chapters(self, mock_fetch_html_content, mock_fetch_text):
        mock_fetch_html_content.return_value = BeautifulSoup(STORY_PAGE_HTML, 'html.parser')
        mock_fetch_text.side_effect = lambda url, params=None: CHAPTER_PAGES[url]

        story = self.fetcher.get_story(self.source)

        texts = [c.text.as_str() for c in story.iter_chapters()]
        self.assertEqual(texts, ["<p>Test chapter text.</p>", "<p><em>Second</em> chapter.</p>"])

    @patch.object(RoyalRoadFetcher, '_fetch_text')
    @patch.object(RoyalRoadFetcher, '_fetch_html_content')
    def test_markdown_output(self, mock_fetch_html_content, mock_fetch_text):
        mock_fetch_html_content.return_value = BeautifulSoup(STORY_PAGE_HTML, 'html.parser')
        mock_fetch_text.side_effect = lambda url, params=None: CHAPTER_PAGES[url]
        fetcher = RoyalRoadFetcher(text_format=TextFormat.MARKDOWN)

        story = fetcher.get_story(self.source)

        self.assertEqual(story.chapters[1].text.as_str(), "*Second* chapter.")

    @patch.object(RoyalRoadFetcher, '_fetch_text')
    @patch.object(RoyalRoadFetcher, '_fetch_html_content')
    def test_missing_chapter_content_fails_hydration(self, mock_fetch_html_content, mock_fetch_text):
        mock_fetch_html_content.return_value = BeautifulSoup(STORY_PAGE_HTML, 'html.parser')
        pages = dict(CHAPTER_PAGES)
        pages[SECOND_CHAPTER_URL] = "<html><body><div class='other-stuff'>Nothing here</div></body></html>"
        mock_fetch_text.side_effect = lambda url, params=None: pages[url]

        with self.assertRaises(HydrationError) as context:
            self.fetcher.get_story(self.source)

        self.assertIsInstance(context.exception.failures[0][1], PageError)


if __name__ == '__main__':
    unittest.main()
