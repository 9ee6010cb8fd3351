import configparser
import os
from typing import Optional

from story_archiver.core.parsers.html_converter import TextFormat
from story_archiver.utils.logger import get_logger

# Determine the absolute path to the directory where this script is located
SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
# Two levels up from story_archiver/core/ is the project root
PROJECT_ROOT = os.path.dirname(os.path.dirname(SCRIPT_DIR))
DEFAULT_WORKSPACE_PATH = os.path.join(PROJECT_ROOT, 'workspace')
DEFAULT_CONFIG_PATH = os.path.join(DEFAULT_WORKSPACE_PATH, 'config', 'settings.ini')
DEFAULT_DATABASE_PATH = os.path.join(DEFAULT_WORKSPACE_PATH, 'archive.db')

DB_ENV_VAR = 'STORY_ARCHIVE_DB'
CONFIG_ENV_VAR = 'STORY_ARCHIVE_CONFIG'

HYDRATION_ALL_OR_NOTHING = 'all-or-nothing'
HYDRATION_PARTIAL = 'partial'
HYDRATION_POLICIES = (HYDRATION_ALL_OR_NOTHING, HYDRATION_PARTIAL)

DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_UPDATE_WORKERS = 4

logger = get_logger(__name__)


def _default_config() -> configparser.ConfigParser:
    config = configparser.ConfigParser()
    config['General'] = {'database_path': DEFAULT_DATABASE_PATH}
    config['Fetching'] = {
        'text_format': TextFormat.HTML.value,
        'hydration_policy': HYDRATION_ALL_OR_NOTHING,
        'request_timeout': str(DEFAULT_REQUEST_TIMEOUT),
        'update_workers': str(DEFAULT_UPDATE_WORKERS),
    }
    return config


class ConfigManager:
    def __init__(self, config_file_path=None):
        self.config_file_path = config_file_path or os.getenv(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
        self.config = configparser.ConfigParser()
        self._load_config()

    def _load_config(self):
        """Loads the configuration from the INI file, creating a default one if it is missing."""
        if not os.path.exists(self.config_file_path):
            logger.warning(f"Config file not found at {self.config_file_path}. Attempting to create a default config or using hardcoded defaults.")
            self.config = _default_config()
            try:
                os.makedirs(os.path.dirname(os.path.abspath(self.config_file_path)), exist_ok=True)
                with open(self.config_file_path, 'w') as configfile:
                    self.config.write(configfile)
                logger.info(f"Created a default config file at: {self.config_file_path}")
            except OSError as e:
                logger.error(f"Error creating default config file: {e}. Using hardcoded defaults.", exc_info=True)
            return

        self.config.read(self.config_file_path)

        # Fill in sections missing from an older or hand-written file
        defaults = _default_config()
        for section in defaults.sections():
            if not self.config.has_section(section):
                self.config.add_section(section)
                logger.info(f"Added missing [{section}] section to the config.")
            for option, value in defaults.items(section):
                if not self.config.has_option(section, option):
                    self.config.set(section, option, value)

    def get_setting(self, section: str, option: str, fallback=None) -> Optional[str]:
        """Gets a specific setting from the configuration."""
        try:
            return self.config.get(section, option, fallback=fallback)
        except (configparser.NoSectionError, configparser.NoOptionError):
            return fallback

    def get_database_path(self, override: Optional[str] = None) -> str:
        """
        Returns the database path.
        Priority:
        1. `override` (the CLI --db option).
        2. STORY_ARCHIVE_DB environment variable.
        3. Path from config file (settings.ini).
        4. Default database path.
        """
        if override:
            return os.path.abspath(override)

        env_db_path = os.getenv(DB_ENV_VAR)
        if env_db_path:
            logger.info(f"Using database path from {DB_ENV_VAR} environment variable: {env_db_path}")
            return os.path.abspath(env_db_path)

        path_from_config = self.get_setting('General', 'database_path', fallback=DEFAULT_DATABASE_PATH) or DEFAULT_DATABASE_PATH
        if not os.path.isabs(path_from_config):
            # Relative paths in settings.ini are relative to the project root
            resolved_path = os.path.join(PROJECT_ROOT, path_from_config)
            logger.debug(f"Resolved relative path from config '{path_from_config}' to '{resolved_path}'")
            return os.path.abspath(resolved_path)
        return os.path.abspath(path_from_config)

    def get_text_format(self) -> TextFormat:
        value = self.get_setting('Fetching', 'text_format', fallback=TextFormat.HTML.value)
        try:
            return TextFormat.from_string(value)
        except ValueError as e:
            logger.warning(f"{e}. Falling back to html.")
            return TextFormat.HTML

    def get_hydration_policy(self) -> str:
        value = (self.get_setting('Fetching', 'hydration_policy', fallback=HYDRATION_ALL_OR_NOTHING) or '').strip().lower()
        if value not in HYDRATION_POLICIES:
            logger.warning(f"Unknown hydration policy '{value}'. Falling back to {HYDRATION_ALL_OR_NOTHING}.")
            return HYDRATION_ALL_OR_NOTHING
        return value

    def allow_partial_hydration(self) -> bool:
        return self.get_hydration_policy() == HYDRATION_PARTIAL

    def get_request_timeout(self) -> float:
        try:
            return self.config.getfloat('Fetching', 'request_timeout', fallback=DEFAULT_REQUEST_TIMEOUT)
        except ValueError:
            logger.warning(f"Invalid request_timeout in {self.config_file_path}. Using {DEFAULT_REQUEST_TIMEOUT}.")
            return DEFAULT_REQUEST_TIMEOUT

    def get_update_workers(self) -> int:
        try:
            workers = self.config.getint('Fetching', 'update_workers', fallback=DEFAULT_UPDATE_WORKERS)
        except ValueError:
            logger.warning(f"Invalid update_workers in {self.config_file_path}. Using {DEFAULT_UPDATE_WORKERS}.")
            return DEFAULT_UPDATE_WORKERS
        return max(1, workers)
