import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Pattern, Tuple

from .exceptions import BadSourceError, NoIdInSourceError


@dataclass(frozen=True)
class Site:
    prefix: str
    name: str
    base_url: str
    path_template: str
    fetcher: str
    pattern: str
    requires_id: bool = True


class SourceKind(Enum):
    AO3 = Site(
        prefix="ao3",
        name="Archive of Our Own",
        base_url="https://archiveofourown.org",
        path_template="/works/{id}",
        fetcher="ao3",
        pattern=r"^(?:https?://)?(?:www\.)?archiveofourown\.org(?:/works/(\d+)|/|$)",
    )
    KATALEPSIS = Site(
        prefix="katalepsis",
        name="Katalepsis",
        base_url="https://katalepsis.net",
        path_template="",
        fetcher="katalepsis",
        pattern=r"^(?:https?://)?(?:www\.)?katalepsis\.net(?:/|$)",
        requires_id=False,
    )
    ROYALROAD = Site(
        prefix="rr",
        name="Royal Road",
        base_url="https://www.royalroad.com",
        path_template="/fiction/{id}",
        fetcher="royalroad",
        pattern=r"^(?:https?://)?(?:www\.)?royalroad\.com(?:/fiction/(\d+)|/|$)",
    )
    FFNET = Site(
        prefix="ffnet",
        name="FanFiction.net",
        base_url="https://www.fanfiction.net",
        path_template="/s/{id}",
        fetcher="ffnet",
        pattern=r"^(?:https?://)?(?:www\.|m\.)?fanfiction\.net(?:/s/(\d+)|/|$)",
    )
    SPACEBATTLES = Site(
        prefix="sb",
        name="SpaceBattles",
        base_url="https://forums.spacebattles.com",
        path_template="/threads/{id}",
        fetcher="xenforo",
        pattern=r"^(?:https?://)?forums\.spacebattles\.com(?:/threads/(?:[^/]*\.)?(\d+)|/|$)",
    )
    SUFFICIENTVELOCITY = Site(
        prefix="sv",
        name="Sufficient Velocity",
        base_url="https://forums.sufficientvelocity.com",
        path_template="/threads/{id}",
        fetcher="xenforo",
        pattern=r"^(?:https?://)?forums\.sufficientvelocity\.com(?:/threads/(?:[^/]*\.)?(\d+)|/|$)",
    )
    QUESTIONABLEQUESTING = Site(
        prefix="qq",
        name="Questionable Questing",
        base_url="https://forum.questionablequesting.com",
        path_template="/threads/{id}",
        fetcher="xenforo",
        pattern=r"^(?:https?://)?forum\.questionablequesting\.com(?:/threads/(?:[^/]*\.)?(\d+)|/|$)",
    )

    @property
    def site(self) -> Site:
        return self.value


SOURCES_LIST = [kind.site.name for kind in SourceKind]


@dataclass(frozen=True)
class StorySource:
    kind: SourceKind
    site_id: Optional[str] = None

    def __post_init__(self):
        if self.kind.site.requires_id and not self.site_id:
            raise NoIdInSourceError(self.kind.site.base_url, self.kind.site.name)

    @property
    def prefix(self) -> str:
        return self.kind.site.prefix

    def to_id(self) -> str:
        if self.site_id is None:
            return self.prefix
        return f"{self.prefix}:{self.site_id}"

    def to_base_url(self) -> str:
        return self.kind.site.base_url

    def to_url(self) -> str:
        return self.to_base_url() + self.kind.site.path_template.format(id=self.site_id)

    @classmethod
    def from_url(cls, url: str) -> "StorySource":
        return get_resolver().classify(url)

    @classmethod
    def from_id(cls, story_id: str) -> "StorySource":
        return get_resolver().parse_id(story_id)

    def __str__(self) -> str:
        return self.to_id()


class SourceResolver:
    """Maps story URLs to sources using an ordered list of site patterns."""

    def __init__(self, kinds: Optional[List[SourceKind]] = None):
        kinds = kinds if kinds is not None else list(SourceKind)
        self._rules: Tuple[Tuple[SourceKind, Pattern], ...] = tuple(
            (kind, re.compile(kind.site.pattern, re.IGNORECASE)) for kind in kinds
        )
        self._by_prefix = {kind.site.prefix: kind for kind in kinds}

    def classify(self, url: str) -> StorySource:
        """
        Returns the source for `url`. The first matching rule wins.

        Raises:
            BadSourceError: no rule matches the URL.
            NoIdInSourceError: the site matched but the URL carries no story id.
        """
        candidate = (url or "").strip()
        for kind, pattern in self._rules:
            match = pattern.match(candidate)
            if not match:
                continue
            site_id = match.group(1) if pattern.groups else None
            if kind.site.requires_id and not site_id:
                raise NoIdInSourceError(url, kind.site.name)
            return StorySource(kind, site_id if kind.site.requires_id else None)
        raise BadSourceError(url)

    def parse_id(self, story_id: str) -> StorySource:
        """Inverse of StorySource.to_id()."""
        prefix, _, site_id = (story_id or "").strip().partition(":")
        kind = self._by_prefix.get(prefix)
        if kind is None:
            raise BadSourceError(story_id)
        if kind.site.requires_id and not site_id:
            raise NoIdInSourceError(story_id, kind.site.name)
        return StorySource(kind, (site_id or None) if kind.site.requires_id else None)


_resolver: Optional[SourceResolver] = None
_resolver_lock = threading.Lock()


def get_resolver() -> SourceResolver:
    """Returns the shared resolver, compiling the rule table on first use."""
    global _resolver
    if _resolver is None:
        with _resolver_lock:
            if _resolver is None:
                _resolver = SourceResolver()
    return _resolver


def classify(url: str) -> StorySource:
    return get_resolver().classify(url)
