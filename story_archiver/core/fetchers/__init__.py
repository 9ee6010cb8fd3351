from .base_fetcher import BaseFetcher, ChapterUpdate
from .ao3_fetcher import AO3Fetcher
from .ffnet_fetcher import FFNetFetcher
from .katalepsis_fetcher import KatalepsisFetcher
from .royalroad_fetcher import RoyalRoadFetcher
from .xenforo_fetcher import XenforoFetcher
from .fetcher_factory import FetcherFactory

__all__ = [
    "BaseFetcher",
    "ChapterUpdate",
    "AO3Fetcher",
    "FFNetFetcher",
    "KatalepsisFetcher",
    "RoyalRoadFetcher",
    "XenforoFetcher",
    "FetcherFactory",
]
