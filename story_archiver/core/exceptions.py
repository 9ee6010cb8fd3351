from typing import List, Optional, Tuple


class ArchiveError(Exception):
    """Base exception for everything the archiver raises on purpose."""
    pass


class BadSourceError(ArchiveError):
    """The URL does not belong to any supported site."""

    def __init__(self, url: str):
        super().__init__(f"Source not supported for URL: {url}")
        self.url = url


class NoIdInSourceError(ArchiveError):
    """The site was recognised but the URL lacks the story id the site needs."""

    def __init__(self, url: str, site: str):
        super().__init__(f"URL {url} matches {site} but does not contain a story id")
        self.url = url
        self.site = site


class PageError(ArchiveError):
    """
    An element the fetcher relies on is missing from a page.

    Usually means the site changed its templates. `element` describes what
    the fetcher was looking for (e.g. "title (.title.heading)").
    """

    def __init__(self, site: str, element: str, url: str):
        super().__init__(f"{site}: Could not find {element} on page {url}")
        self.site = site
        self.element = element
        self.url = url


class StoryNotExistsError(ArchiveError):
    def __init__(self, url: str):
        super().__init__(f"Story at {url} is not in the archive. Add it first.")
        self.url = url


class RequestError(ArchiveError):
    """Transport failure or unexpected HTTP status while fetching a page."""

    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"Request failed for {url}: {message}")
        self.url = url
        self.status_code = status_code


class DatabaseError(ArchiveError):
    pass


class ParseError(ArchiveError):
    """A timestamp or other structured field could not be parsed."""
    pass


class ParseIntError(ParseError):
    pass


class InternalError(ArchiveError):
    """An invariant of the archiver itself was violated."""
    pass


class HydrationError(InternalError):
    """One or more chapters of a hydration batch could not be filled in."""

    def __init__(self, failures: List[Tuple[str, Exception]]):
        self.failures = failures
        first_url, first_error = failures[0]
        super().__init__(
            f"Failed to hydrate {len(failures)} chapter(s); first failure at {first_url}: {first_error}"
        )


class AmbiguousStoryError(ArchiveError):
    """A search term matched more than one stored story."""

    def __init__(self, search: str, matches: List[str]):
        super().__init__(f"'{search}' matches {len(matches)} stories: {', '.join(matches)}")
        self.search = search
        self.matches = matches
