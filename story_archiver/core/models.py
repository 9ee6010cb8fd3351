import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from .exceptions import InternalError
from .sources import StorySource


class Completed(Enum):
    COMPLETE = "Complete"
    INCOMPLETE = "Incomplete"
    UNKNOWN = "Unknown"

    @classmethod
    def from_string(cls, value: Optional[str]) -> "Completed":
        for member in cls:
            if value and member.value.lower() == value.strip().lower():
                return member
        return cls.UNKNOWN

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Author:
    name: str
    id: str


class AuthorList:
    """Ordered, non-empty, id-unique list of authors."""

    def __init__(self, authors: Iterable[Author]):
        unique: List[Author] = []
        seen = set()
        for author in authors:
            if author.id not in seen:
                seen.add(author.id)
                unique.append(author)
        if not unique:
            raise ValueError("A story must have at least one author.")
        self._authors = unique

    @classmethod
    def single(cls, author: Author) -> "AuthorList":
        return cls([author])

    @property
    def primary(self) -> Author:
        return self._authors[0]

    def authors(self) -> List[Author]:
        return list(self._authors)

    def find_by_name(self, name: str) -> Optional[Author]:
        return next((a for a in self._authors if a.name == name), None)

    def __iter__(self) -> Iterator[Author]:
        return iter(self._authors)

    def __len__(self) -> int:
        return len(self._authors)

    def __eq__(self, other) -> bool:
        return isinstance(other, AuthorList) and self._authors == other._authors

    def __repr__(self) -> str:
        return f"AuthorList({self._authors!r})"

    def __str__(self) -> str:
        return ", ".join(a.name for a in self._authors)


class ChapterText:
    """
    Body of a chapter: either Dehydrated (not fetched yet) or Hydrated.

    Hydration happens once; a hydrated text is never replaced.
    """

    __slots__ = ("_text",)

    def __init__(self, text: Optional[str] = None):
        self._text = text

    @classmethod
    def dehydrated(cls) -> "ChapterText":
        return cls(None)

    @classmethod
    def hydrated(cls, text: str) -> "ChapterText":
        return cls(text if text is not None else "")

    @property
    def is_hydrated(self) -> bool:
        return self._text is not None

    def hydrate(self, text: str) -> None:
        if self._text is not None:
            raise InternalError("Chapter text is already hydrated.")
        self._text = text if text is not None else ""

    def as_str(self) -> str:
        return self._text or ""

    def __str__(self) -> str:
        return self.as_str()

    def __eq__(self, other) -> bool:
        return isinstance(other, ChapterText) and self._text == other._text

    def __repr__(self) -> str:
        if self._text is None:
            return "ChapterText.Dehydrated"
        return f"ChapterText.Hydrated({len(self._text)} chars)"


@dataclass
class Chapter:
    id: str
    name: str
    url: str
    date_posted: datetime.datetime
    text: ChapterText = field(default_factory=ChapterText.dehydrated)
    description: Optional[str] = None
    author: Optional[Author] = None

    def __post_init__(self):
        if self.date_posted.tzinfo is None:
            raise ValueError(f"date_posted for chapter {self.id} must be timezone-aware.")

    @property
    def site_chapter_id(self) -> str:
        """The last segment of the id, i.e. the site's own chapter/post number."""
        return self.id.rsplit(":", 1)[-1]


@dataclass
class Section:
    id: str
    name: str
    chapters: List["Content"]
    description: Optional[str] = None
    url: Optional[str] = None
    author: Optional[Author] = None

    def __post_init__(self):
        if not self.chapters:
            raise ValueError(f"Section {self.id} must contain at least one chapter or section.")


Content = Union[Section, Chapter]


@dataclass
class Story:
    name: str
    authors: AuthorList
    url: str
    source: StorySource
    chapters: List[Content] = field(default_factory=list)
    description: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    completed: Completed = Completed.UNKNOWN

    @property
    def id(self) -> str:
        return self.source.to_id()

    def iter_chapters(self) -> Iterator[Chapter]:
        from .content_tree import iter_chapters
        return iter_chapters(self.chapters)

    def num_chapters(self) -> int:
        return sum(1 for _ in self.iter_chapters())

    def find_by_id(self, content_id: str) -> Optional[Tuple[Content, Optional[Section]]]:
        from .content_tree import find_by_id
        return find_by_id(self.chapters, content_id)


@dataclass
class ListedStory:
    """Summary row used for listing; derived from the database at read time."""
    id: str
    name: str
    author: str
    chapter_count: int
    source: StorySource
    completed: Completed
