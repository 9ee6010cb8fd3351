import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from story_archiver.core.exceptions import ArchiveError, DatabaseError, InternalError
from story_archiver.core.models import Author, AuthorList, Chapter, ChapterText, Completed, Content, ListedStory, Section, Story
from story_archiver.core.sources import StorySource
from story_archiver.utils.date_parsing import parse_rfc3339
from story_archiver.utils.logger import get_logger

from .tree_builder import SectionRecord, build_content_tree

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS authors (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS stories (
    id TEXT NOT NULL PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    url TEXT NOT NULL,
    completed TEXT NOT NULL,
    author_id TEXT NOT NULL,
    FOREIGN KEY (author_id) REFERENCES authors(id)
);
CREATE TABLE IF NOT EXISTS story_authors (
    story_id TEXT NOT NULL,
    author_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    PRIMARY KEY (story_id, author_id),
    FOREIGN KEY (story_id) REFERENCES stories(id),
    FOREIGN KEY (author_id) REFERENCES authors(id)
);
CREATE TABLE IF NOT EXISTS sections (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    url TEXT,
    story_id TEXT NOT NULL,
    parent_id TEXT,
    author_id TEXT,
    FOREIGN KEY (story_id) REFERENCES stories(id),
    FOREIGN KEY (author_id) REFERENCES authors(id)
);
CREATE TABLE IF NOT EXISTS chapters (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    text TEXT NOT NULL,
    url TEXT NOT NULL,
    date_posted TEXT NOT NULL,
    story_id TEXT NOT NULL,
    section_id TEXT,
    author_id TEXT,
    FOREIGN KEY (story_id) REFERENCES stories(id),
    FOREIGN KEY (section_id) REFERENCES sections(id),
    FOREIGN KEY (author_id) REFERENCES authors(id)
);
CREATE TABLE IF NOT EXISTS tags (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS tag_uses (
    tag_id TEXT NOT NULL,
    story_id TEXT NOT NULL,
    PRIMARY KEY (tag_id, story_id),
    FOREIGN KEY (tag_id) REFERENCES tags(id),
    FOREIGN KEY (story_id) REFERENCES stories(id)
);
CREATE TABLE IF NOT EXISTS valid_sites (
    site_url TEXT PRIMARY KEY,
    matches_parser TEXT NOT NULL
);
"""

MEMORY_PATH = ":memory:"

# Schema creation runs once per database file per process
_schema_lock = threading.Lock()
_initialized_paths: Set[str] = set()


class Database:
    """
    The archive's SQLite store.

    One connection per instance, shared between threads behind a lock. Every
    write runs in a single transaction that is rolled back on any error.
    """

    def __init__(self, path: str):
        self.path = path
        is_memory = path == MEMORY_PATH
        file_exists = is_memory or os.path.exists(path)
        if not file_exists:
            logger.info(f"Database file at {path} does not exist. Creating...")
            directory = os.path.dirname(os.path.abspath(path))
            os.makedirs(directory, exist_ok=True)
        try:
            self._conn = sqlite3.connect(path, check_same_thread=False)
        except sqlite3.Error as e:
            raise DatabaseError(f"Could not open database at {path}: {e}") from e
        self._lock = threading.RLock()
        self._init_schema(force=is_memory or not file_exists)

    def _init_schema(self, force: bool = False) -> None:
        key = os.path.abspath(self.path) if self.path != MEMORY_PATH else None
        with _schema_lock:
            if not force and key in _initialized_paths:
                return
            try:
                self._conn.executescript(SCHEMA)
            except sqlite3.Error as e:
                raise DatabaseError(f"Could not create schema in {self.path}: {e}") from e
            if key is not None:
                _initialized_paths.add(key)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise DatabaseError(str(e)) from e
            except Exception:
                self._conn.rollback()
                raise

    def _query(self, sql: str, params: Sequence = ()) -> List[tuple]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise DatabaseError(str(e)) from e

    # --- reading ---

    def get_all_stories(self) -> List[ListedStory]:
        rows = self._query(
            """SELECT
                stories.id,
                stories.name,
                authors.name,
                stories.completed,
                COUNT(chapters.id) AS chapter_count
            FROM stories
                LEFT JOIN authors ON stories.author_id = authors.id
                LEFT JOIN chapters ON stories.id = chapters.story_id
            GROUP BY stories.id
            ORDER BY stories.name"""
        )
        stories: List[ListedStory] = []
        failed_stories = 0
        for story_id, name, author_name, completed, chapter_count in rows:
            try:
                source = StorySource.from_id(story_id)
            except ArchiveError as e:
                logger.warning(f"Could not read story {story_id} from the database: {e}")
                failed_stories += 1
                continue
            stories.append(ListedStory(
                id=story_id,
                name=name,
                author=author_name or "",
                chapter_count=chapter_count,
                source=source,
                completed=Completed.from_string(completed),
            ))
        logger.info(f"Got {len(stories)} stories. Failed to get {failed_stories} stories.")
        return stories

    def story_exists_with_id(self, story_id: str) -> bool:
        rows = self._query("SELECT COUNT(*) FROM stories WHERE id = ?", (story_id,))
        return rows[0][0] > 0

    def fuzzy_get_story(self, search: str) -> List[str]:
        """Ids of stories whose name or an author's name contains `search`, or whose id equals it."""
        pattern = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        rows = self._query(
            """SELECT DISTINCT stories.id
            FROM stories
                LEFT JOIN story_authors ON story_authors.story_id = stories.id
                LEFT JOIN authors ON authors.id = story_authors.author_id
            WHERE
                stories.id = :search
                OR stories.name LIKE '%' || :pattern || '%' ESCAPE '\\'
                OR authors.name LIKE '%' || :pattern || '%' ESCAPE '\\'
            ORDER BY stories.id""",
            {"search": search, "pattern": pattern},
        )
        return [row[0] for row in rows]

    def get_story_by_id(self, story_id: str) -> Optional[Story]:
        story_rows = self._query(
            "SELECT name, description, url, completed, author_id FROM stories WHERE id = ?",
            (story_id,),
        )
        if not story_rows:
            return None
        name, description, url, completed, primary_author_id = story_rows[0]

        authors_by_id = self._get_authors_for_story(story_id)
        author_ids = [row[0] for row in self._query(
            "SELECT author_id FROM story_authors WHERE story_id = ? ORDER BY position",
            (story_id,),
        )] or [primary_author_id]
        story_authors = [authors_by_id[a] for a in author_ids if a in authors_by_id]
        if not story_authors:
            raise InternalError(f"Story {story_id} has no authors in the database.")

        sections = [
            SectionRecord(
                id=row[0],
                name=row[1],
                description=row[2],
                url=row[3],
                parent_id=row[4],
                author=authors_by_id.get(row[5]) if row[5] else None,
            )
            for row in self._query(
                "SELECT id, name, description, url, parent_id, author_id FROM sections WHERE story_id = ?",
                (story_id,),
            )
        ]
        chapters: List[Tuple[Optional[str], Chapter]] = []
        for chapter_id, chapter_name, chapter_description, text, chapter_url, date_posted, section_id, author_id in self._query(
            """SELECT id, name, description, text, url, date_posted, section_id, author_id
            FROM chapters WHERE story_id = ?""",
            (story_id,),
        ):
            chapters.append((section_id, Chapter(
                id=chapter_id,
                name=chapter_name,
                url=chapter_url,
                date_posted=parse_rfc3339(date_posted),
                text=ChapterText.hydrated(text),
                description=chapter_description,
                author=authors_by_id.get(author_id) if author_id else None,
            )))

        tags = [row[0] for row in self._query(
            """SELECT tags.name FROM tag_uses INNER JOIN tags ON tags.id = tag_uses.tag_id
            WHERE tag_uses.story_id = ? ORDER BY tags.name""",
            (story_id,),
        )]

        return Story(
            name=name,
            authors=AuthorList(story_authors),
            url=url,
            source=StorySource.from_id(story_id),
            chapters=build_content_tree(sections, chapters),
            description=description,
            tags=tags,
            completed=Completed.from_string(completed),
        )

    def _get_authors_for_story(self, story_id: str) -> Dict[str, Author]:
        rows = self._query(
            """SELECT id, name FROM authors WHERE id IN (
                SELECT author_id FROM stories WHERE id = :story_id
                UNION SELECT author_id FROM story_authors WHERE story_id = :story_id
                UNION SELECT author_id FROM sections WHERE story_id = :story_id
                UNION SELECT author_id FROM chapters WHERE story_id = :story_id
            )""",
            {"story_id": story_id},
        )
        return {row[0]: Author(name=row[1], id=row[0]) for row in rows}

    # --- writing ---

    def save_story(self, story: Story, overwrite: bool = False) -> None:
        """
        Inserts the whole story, its authors, tags and content tree.

        With `overwrite`, any stored copy of the story is replaced within the
        same transaction. Every chapter must be hydrated.
        """
        story_id = story.id
        with self._transaction() as conn:
            if overwrite:
                self._delete_story_rows(conn, story_id)
            for author in story.authors:
                conn.execute("INSERT OR IGNORE INTO authors (id, name) VALUES (?, ?)", (author.id, author.name))
            conn.execute(
                "INSERT INTO stories (id, name, description, url, completed, author_id) VALUES (?, ?, ?, ?, ?, ?)",
                (story_id, story.name, story.description, story.url, str(story.completed), story.authors.primary.id),
            )
            for position, author in enumerate(story.authors):
                conn.execute(
                    "INSERT INTO story_authors (story_id, author_id, position) VALUES (?, ?, ?)",
                    (story_id, author.id, position),
                )
            for content in story.chapters:
                self._insert_content(conn, content, story_id, None)
            for tag in story.tags:
                tag_id = tag.lower()
                conn.execute("INSERT OR IGNORE INTO tags (id, name) VALUES (?, ?)", (tag_id, tag))
                conn.execute("INSERT OR IGNORE INTO tag_uses (tag_id, story_id) VALUES (?, ?)", (tag_id, story_id))
        logger.info(f"Saved story {story_id} with {story.num_chapters()} chapter(s).")

    def save_content(self, content: Content, story_id: str, parent_id: Optional[str] = None) -> None:
        """Inserts `content` and its whole subtree under `parent_id` of an existing story."""
        self.save_contents(story_id, [(content, parent_id)])

    def save_contents(self, story_id: str, items: Sequence[Tuple[Content, Optional[str]]]) -> None:
        """Inserts several (content, parent_id) subtrees in one transaction."""
        with self._transaction() as conn:
            for content, parent_id in items:
                self._insert_content(conn, content, story_id, parent_id)

    def _insert_content(self, conn: sqlite3.Connection, content: Content, story_id: str, parent_id: Optional[str]) -> None:
        stack: List[Tuple[Content, Optional[str]]] = [(content, parent_id)]
        while stack:
            node, parent = stack.pop()
            if node.author is not None:
                conn.execute("INSERT OR IGNORE INTO authors (id, name) VALUES (?, ?)", (node.author.id, node.author.name))
            author_id = node.author.id if node.author is not None else None
            if isinstance(node, Section):
                conn.execute(
                    """INSERT INTO sections (id, name, description, url, story_id, parent_id, author_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (node.id, node.name, node.description, node.url, story_id, parent, author_id),
                )
                stack.extend((child, node.id) for child in reversed(node.chapters))
                continue
            if not node.text.is_hydrated:
                raise InternalError(f"Refusing to save chapter {node.id}: its text was never fetched.")
            conn.execute(
                """INSERT INTO chapters (id, name, description, text, url, date_posted, story_id, section_id, author_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (node.id, node.name, node.description, node.text.as_str(), node.url,
                 node.date_posted.isoformat(), story_id, parent, author_id),
            )

    def delete_story_by_id(self, story_id: str) -> bool:
        """Removes a story and everything stored under it. Returns False if it was not stored."""
        with self._transaction() as conn:
            deleted = self._delete_story_rows(conn, story_id)
        if deleted:
            logger.info(f"Deleted story {story_id}.")
        return deleted

    def _delete_story_rows(self, conn: sqlite3.Connection, story_id: str) -> bool:
        conn.execute("DELETE FROM chapters WHERE story_id = ?", (story_id,))
        conn.execute("DELETE FROM sections WHERE story_id = ?", (story_id,))
        conn.execute("DELETE FROM tag_uses WHERE story_id = ?", (story_id,))
        conn.execute("DELETE FROM story_authors WHERE story_id = ?", (story_id,))
        cursor = conn.execute("DELETE FROM stories WHERE id = ?", (story_id,))
        return cursor.rowcount > 0

    # --- site allow-list ---

    def add_valid_site(self, site_url: str, matches_parser: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO valid_sites (site_url, matches_parser) VALUES (?, ?)",
                (site_url, matches_parser),
            )

    def get_parser_for_site(self, site_url: str) -> Optional[str]:
        rows = self._query("SELECT matches_parser FROM valid_sites WHERE site_url = ?", (site_url,))
        return rows[0][0] if rows else None

    def has_valid_sites(self) -> bool:
        return self._query("SELECT COUNT(*) FROM valid_sites")[0][0] > 0
