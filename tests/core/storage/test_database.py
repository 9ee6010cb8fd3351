import os
import sqlite3

import pytest

from story_archiver.core.exceptions import InternalError
from story_archiver.core.models import Author, AuthorList, Chapter, Completed, Section
from story_archiver.core.sources import SourceKind, StorySource
from story_archiver.core.storage.database import MEMORY_PATH, Database


@pytest.fixture
def chapter(story_builders):
    return story_builders["chapter"]


@pytest.fixture
def section(story_builders):
    return story_builders["section"]


@pytest.fixture
def make_story(story_builders):
    return story_builders["story"]


@pytest.fixture
def katalepsis():
    return StorySource(SourceKind.KATALEPSIS)


def _count(db, table):
    return db._query(f"SELECT COUNT(*) FROM {table}")[0][0]


def test_creates_database_file_and_parent_directory(isolated_workspace):
    path = os.path.join(isolated_workspace, "nested", "dir", "archive.db")
    with Database(path) as db:
        assert db.get_all_stories() == []
    assert os.path.exists(path)


def test_in_memory_database():
    with Database(MEMORY_PATH) as db:
        assert not db.has_valid_sites()


def test_save_and_load_nested_story(db, chapter, section, make_story, katalepsis):
    guest = Author(name="Guest", id="katalepsis:guest")
    story = make_story(katalepsis, [
        section("katalepsis:1", [chapter("katalepsis:1:1"), chapter("katalepsis:1:2", author=guest)]),
        section("katalepsis:2", [
            chapter("katalepsis:2:1"),
            section("katalepsis:2:x", [chapter("katalepsis:2:x:1", text="<p>deep</p>")]),
        ]),
        chapter("katalepsis:epilogue"),
    ], tags=["genre:Horror", "Romance"])

    db.save_story(story)
    loaded = db.get_story_by_id("katalepsis")

    assert loaded.name == story.name
    assert loaded.url == story.url
    assert loaded.description == "A description"
    assert loaded.completed == Completed.INCOMPLETE
    assert loaded.tags == ["Romance", "genre:Horror"]
    assert [a.id for a in loaded.authors] == ["katalepsis:writer"]
    assert loaded.source == katalepsis

    assert [node.id for node in loaded.chapters] == ["katalepsis:1", "katalepsis:2", "katalepsis:epilogue"]
    arc2 = loaded.chapters[1]
    assert isinstance(arc2, Section)
    assert [node.id for node in arc2.chapters] == ["katalepsis:2:1", "katalepsis:2:x"]
    deep = arc2.chapters[1].chapters[0]
    assert isinstance(deep, Chapter)
    assert deep.text.as_str() == "<p>deep</p>"
    assert deep.date_posted == story.chapters[1].chapters[1].chapters[0].date_posted

    node, parent = loaded.find_by_id("katalepsis:1:2")
    assert node.author == guest
    assert parent.id == "katalepsis:1"


def test_multiple_authors_keep_their_order(db, chapter, make_story):
    source = StorySource(SourceKind.SPACEBATTLES, "7")
    authors = AuthorList([Author(name="Zed", id="sb:9"), Author(name="Amy", id="sb:1")])
    db.save_story(make_story(source, [chapter("sb:7:100")], authors=authors))

    loaded = db.get_story_by_id("sb:7")
    assert [a.name for a in loaded.authors] == ["Zed", "Amy"]


def test_get_story_by_id_missing(db):
    assert db.get_story_by_id("rr:404") is None
    assert not db.story_exists_with_id("rr:404")


def test_get_all_stories(db, chapter, make_story):
    db.save_story(make_story(StorySource(SourceKind.ROYALROAD, "2"), [chapter("rr:2:1"), chapter("rr:2:2")], name="Beta"))
    db.save_story(make_story(StorySource(SourceKind.AO3, "1"), [chapter("ao3:1:1")], name="Alpha"))

    listed = db.get_all_stories()

    assert [s.name for s in listed] == ["Alpha", "Beta"]
    assert listed[1].chapter_count == 2
    assert listed[1].author == "Writer"
    assert listed[1].source == StorySource(SourceKind.ROYALROAD, "2")
    assert listed[1].completed == Completed.INCOMPLETE


def test_save_contents_appends_under_parent(db, chapter, section, make_story, katalepsis):
    db.save_story(make_story(katalepsis, [section("katalepsis:1", [chapter("katalepsis:1:1")])]))

    db.save_contents("katalepsis", [
        (chapter("katalepsis:1:2"), "katalepsis:1"),
        (section("katalepsis:2", [chapter("katalepsis:2:1")]), None),
    ])
    db.save_content(chapter("katalepsis:afterword"), "katalepsis")

    loaded = db.get_story_by_id("katalepsis")
    assert [c.id for c in loaded.iter_chapters()] == [
        "katalepsis:1:1", "katalepsis:1:2", "katalepsis:2:1", "katalepsis:afterword",
    ]


def test_save_contents_is_atomic(db, chapter, make_story):
    source = StorySource(SourceKind.ROYALROAD, "3")
    db.save_story(make_story(source, [chapter("rr:3:1")]))

    with pytest.raises(InternalError):
        db.save_contents("rr:3", [
            (chapter("rr:3:2"), None),
            (chapter("rr:3:3", hydrated=False), None),
        ])

    assert _count(db, "chapters") == 1


def test_refuses_dehydrated_chapter(db, chapter, make_story):
    story = make_story(StorySource(SourceKind.FFNET, "5"), [chapter("ffnet:5:1", hydrated=False)])
    with pytest.raises(InternalError):
        db.save_story(story)
    assert not db.story_exists_with_id("ffnet:5")


def test_overwrite_replaces_story(db, chapter, make_story):
    source = StorySource(SourceKind.ROYALROAD, "4")
    db.save_story(make_story(source, [chapter("rr:4:1"), chapter("rr:4:2")], tags=["old"]))
    db.save_story(make_story(source, [chapter("rr:4:1", text="new")], tags=["new"], name="Renamed"), overwrite=True)

    loaded = db.get_story_by_id("rr:4")
    assert loaded.name == "Renamed"
    assert [c.text.as_str() for c in loaded.iter_chapters()] == ["new"]
    assert loaded.tags == ["new"]


def test_duplicate_story_without_overwrite_fails(db, chapter, make_story):
    from story_archiver.core.exceptions import DatabaseError

    source = StorySource(SourceKind.ROYALROAD, "4")
    db.save_story(make_story(source, [chapter("rr:4:1")]))
    with pytest.raises(DatabaseError):
        db.save_story(make_story(source, [chapter("rr:4:9")]))
    assert [c.id for c in db.get_story_by_id("rr:4").iter_chapters()] == ["rr:4:1"]


def test_delete_story(db, chapter, section, make_story, katalepsis):
    db.save_story(make_story(katalepsis, [section("katalepsis:1", [chapter("katalepsis:1:1")])], tags=["x"]))

    assert db.delete_story_by_id("katalepsis") is True
    assert db.get_story_by_id("katalepsis") is None
    for table in ("chapters", "sections", "tag_uses", "story_authors", "stories"):
        assert _count(db, table) == 0
    assert db.delete_story_by_id("katalepsis") is False


def test_fuzzy_get_story(db, chapter, make_story):
    db.save_story(make_story(StorySource(SourceKind.ROYALROAD, "1"), [chapter("rr:1:1")], name="Mother of Learning"))
    db.save_story(make_story(
        StorySource(SourceKind.AO3, "2"), [chapter("ao3:2:1")], name="Other Story",
        authors=AuthorList.single(Author(name="Nobody103", id="ao3:nobody103")),
    ))

    assert db.fuzzy_get_story("rr:1") == ["rr:1"]
    assert db.fuzzy_get_story("learning") == ["rr:1"]
    assert db.fuzzy_get_story("nobody") == ["ao3:2"]
    assert db.fuzzy_get_story("o") == ["ao3:2", "rr:1"]
    assert db.fuzzy_get_story("zzz") == []


def test_fuzzy_get_story_treats_wildcards_literally(db, chapter, make_story):
    db.save_story(make_story(StorySource(SourceKind.ROYALROAD, "1"), [chapter("rr:1:1")], name="100% Done"))
    db.save_story(make_story(StorySource(SourceKind.ROYALROAD, "2"), [chapter("rr:2:1")], name="Plain Story"))

    assert db.fuzzy_get_story("%") == ["rr:1"]
    assert db.fuzzy_get_story("_") == []
    assert db.fuzzy_get_story("0% d") == ["rr:1"]


def test_valid_sites(db):
    assert not db.has_valid_sites()
    db.add_valid_site("royalroad.com", "royalroad")
    db.add_valid_site("royalroad.com", "royalroad")

    assert db.has_valid_sites()
    assert db.get_parser_for_site("royalroad.com") == "royalroad"
    assert db.get_parser_for_site("example.com") is None


def test_existing_file_keeps_data(isolated_workspace, chapter, make_story):
    path = os.path.join(isolated_workspace, "reopen.db")
    with Database(path) as db:
        db.save_story(make_story(StorySource(SourceKind.ROYALROAD, "8"), [chapter("rr:8:1")]))
    with Database(path) as db:
        assert db.story_exists_with_id("rr:8")

    conn = sqlite3.connect(path)
    try:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    finally:
        conn.close()
    assert {"authors", "stories", "sections", "chapters", "tags", "tag_uses", "valid_sites"} <= tables
