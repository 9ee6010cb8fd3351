import os
import threading
from typing import List, Optional

from story_archiver.core.client import DEFAULT_TIMEOUT_SECONDS, RateLimitedClient, configure_client
from story_archiver.core.config_manager import ConfigManager, DB_ENV_VAR, DEFAULT_DATABASE_PATH, DEFAULT_UPDATE_WORKERS
from story_archiver.core.fetchers.base_fetcher import BaseFetcher
from story_archiver.core.fetchers.fetcher_factory import FetcherFactory
from story_archiver.core.parsers.html_converter import TextFormat
from story_archiver.core.sources import StorySource
from story_archiver.core.storage.database import Database
from story_archiver.utils.logger import get_logger

logger = get_logger(__name__)


class ArchiveContext:
    """
    Resolves configuration for a CLI invocation: where the database lives and
    how stories are fetched.
    """

    def __init__(self, db_path_option: Optional[str] = None, config_manager: Optional[ConfigManager] = None):
        self.db_path_option = db_path_option
        self._config_manager = config_manager
        self._client: Optional[RateLimitedClient] = None
        self._client_lock = threading.Lock()
        self.error_messages: List[str] = []

        self.database_path: str = self._resolve_database_path()
        self.text_format: TextFormat = self._resolve_text_format()
        self.allow_partial: bool = self._resolve_allow_partial()
        self.update_workers: int = self._resolve_update_workers()

    @property
    def config_manager(self) -> Optional[ConfigManager]:
        if self._config_manager is None:
            try:
                self._config_manager = ConfigManager()
            except Exception as e:
                logger.error(f"Failed to initialize ConfigManager: {e}", exc_info=True)
                self.error_messages.append(f"Warning: Failed to read configuration, using defaults ({e})")
        return self._config_manager

    def _resolve_database_path(self) -> str:
        if self.config_manager is None:
            path = os.path.abspath(self.db_path_option or os.getenv(DB_ENV_VAR) or DEFAULT_DATABASE_PATH)
        else:
            path = self.config_manager.get_database_path(self.db_path_option)
        logger.info(f"Using database at {path}")
        return path

    def _resolve_text_format(self) -> TextFormat:
        return self.config_manager.get_text_format() if self.config_manager else TextFormat.HTML

    def _resolve_allow_partial(self) -> bool:
        return self.config_manager.allow_partial_hydration() if self.config_manager else False

    def _resolve_update_workers(self) -> int:
        return self.config_manager.get_update_workers() if self.config_manager else DEFAULT_UPDATE_WORKERS

    @property
    def client(self) -> RateLimitedClient:
        with self._client_lock:
            if self._client is None:
                timeout = self.config_manager.get_request_timeout() if self.config_manager else DEFAULT_TIMEOUT_SECONDS
                self._client = configure_client(timeout=timeout)
        return self._client

    def open_database(self) -> Database:
        return Database(self.database_path)

    def get_fetcher(self, source: StorySource) -> BaseFetcher:
        return FetcherFactory.get_fetcher(source, text_format=self.text_format, client=self.client)
