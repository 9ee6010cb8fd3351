import datetime
import os
import tempfile

import pytest

from story_archiver.core.fetchers.base_fetcher import BaseFetcher
from story_archiver.core.models import Author, AuthorList, Chapter, ChapterText, Completed, Section, Story
from story_archiver.core.sources import SourceKind, StorySource
from story_archiver.core.storage.database import Database

POSTED = datetime.datetime(2021, 5, 1, 12, 0, tzinfo=datetime.timezone.utc)


@pytest.fixture(autouse=True)
def isolated_workspace(monkeypatch):
    """Isolate config and database paths for each test."""
    with tempfile.TemporaryDirectory() as temp_dir:
        monkeypatch.setenv("STORY_ARCHIVE_CONFIG", os.path.join(temp_dir, "settings.ini"))
        monkeypatch.setenv("STORY_ARCHIVE_DB", os.path.join(temp_dir, "archive.db"))
        yield temp_dir


@pytest.fixture
def db(isolated_workspace):
    database = Database(os.path.join(isolated_workspace, "test.db"))
    yield database
    database.close()


def make_chapter(chapter_id, name=None, text="text", hydrated=True, author=None):
    return Chapter(
        id=chapter_id,
        name=name or f"Chapter {chapter_id}",
        url=f"https://example.com/{chapter_id.replace(':', '/')}",
        date_posted=POSTED,
        text=ChapterText.hydrated(text) if hydrated else ChapterText.dehydrated(),
        author=author,
    )


def make_section(section_id, children, name=None):
    return Section(id=section_id, name=name or f"Section {section_id}", chapters=children)


def make_story(source, chapters, name="Test Story", tags=None, authors=None):
    return Story(
        name=name,
        authors=authors or AuthorList.single(Author(name="Writer", id=f"{source.prefix}:writer")),
        url=source.to_url(),
        source=source,
        chapters=chapters,
        description="A description",
        tags=tags or [],
        completed=Completed.INCOMPLETE,
    )


class FakeFetcher(BaseFetcher):
    """
    Serves a story from in-memory chapter lists instead of the network.

    `chapter_ids` is what the "site" lists right now; it can be changed
    between calls to simulate new chapters being posted.
    """

    site_name = "Fake"

    def __init__(self, chapter_ids, failing_ids=()):
        super().__init__()
        self.chapter_ids = list(chapter_ids)
        self.failing_ids = set(failing_ids)
        self.hydrated = []
        self.skeleton_calls = 0

    def get_skeleton(self, source):
        self.skeleton_calls += 1
        chapters = [make_chapter(cid, hydrated=False) for cid in self.chapter_ids]
        return make_story(source, chapters)

    def fill_skeleton(self, story, allow_partial=False):
        from story_archiver.core.exceptions import RequestError
        from story_archiver.core.fetchers.base_fetcher import ChapterUpdate

        updates, failures = [], []
        for chapter in story.iter_chapters():
            if chapter.text.is_hydrated:
                continue
            if chapter.id in self.failing_ids:
                failures.append((chapter.url, RequestError(chapter.url, "boom")))
            else:
                updates.append((chapter, ChapterUpdate(text=f"<p>{chapter.id}</p>")))
        self._apply_updates(story, updates, failures, allow_partial)
        self.hydrated.extend(chapter.id for chapter, _ in updates)
        return story


@pytest.fixture
def ao3_source():
    return StorySource(SourceKind.AO3, "1")


@pytest.fixture
def fake_fetcher_cls():
    return FakeFetcher


@pytest.fixture
def story_builders():
    return {"chapter": make_chapter, "section": make_section, "story": make_story}
