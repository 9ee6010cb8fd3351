from typing import Dict, List, Optional, Type

from story_archiver.core.client import RateLimitedClient
from story_archiver.core.exceptions import BadSourceError
from story_archiver.core.parsers.html_converter import TextFormat
from story_archiver.core.sources import StorySource

from .ao3_fetcher import AO3Fetcher
from .base_fetcher import BaseFetcher
from .ffnet_fetcher import FFNetFetcher
from .katalepsis_fetcher import KatalepsisFetcher
from .royalroad_fetcher import RoyalRoadFetcher
from .xenforo_fetcher import XenforoFetcher


class FetcherFactory:
    """
    Factory class to select and return the appropriate fetcher for a story source.
    """

    # Fetcher name (as stored on each site and in the valid_sites table) -> class
    FETCHERS: Dict[str, Type[BaseFetcher]] = {
        "ao3": AO3Fetcher,
        "katalepsis": KatalepsisFetcher,
        "royalroad": RoyalRoadFetcher,
        "ffnet": FFNetFetcher,
        "xenforo": XenforoFetcher,
    }

    @staticmethod
    def get_fetcher(
        source: StorySource,
        text_format: TextFormat = TextFormat.HTML,
        client: Optional[RateLimitedClient] = None,
    ) -> BaseFetcher:
        """
        Returns an instance of the fetcher that handles `source`.

        Raises:
            BadSourceError: If no fetcher is registered for the source's site.
        """
        fetcher_cls = FetcherFactory.FETCHERS.get(source.kind.site.fetcher)
        if fetcher_cls is None:
            raise BadSourceError(source.to_url())
        return fetcher_cls(text_format=text_format, client=client)

    @staticmethod
    def get_fetcher_for_url(
        story_url: str,
        text_format: TextFormat = TextFormat.HTML,
        client: Optional[RateLimitedClient] = None,
    ) -> BaseFetcher:
        return FetcherFactory.get_fetcher(StorySource.from_url(story_url), text_format, client)

    @staticmethod
    def fetcher_names() -> List[str]:
        return sorted(FetcherFactory.FETCHERS)
