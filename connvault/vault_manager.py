import logging
import os
from typing import List, Optional

from . import config

logger = logging.getLogger(__name__)


def get_config_dir() -> str:
    """
    Platform config directory: %APPDATA%/connvault on Windows,
    ~/.config/connvault elsewhere.
    """
    appdata = os.environ.get("APPDATA")
    if appdata:
        return os.path.join(appdata, config.CONFIG_DIR_NAME)
    return os.path.join(os.path.expanduser("~"), ".config", config.CONFIG_DIR_NAME)


def get_default_config_path() -> str:
    return os.path.join(get_config_dir(), config.DEFAULT_CONFIG_FILE)


def _recent_file() -> str:
    return os.path.join(get_config_dir(), config.RECENT_CONFIGS_FILE)


def get_recent_config_paths() -> List[str]:
    """
    Loads the list of recently opened configuration paths, newest first.
    Paths that no longer exist are skipped. Any read error yields an empty list.
    """
    recent_paths = []
    try:
        with open(_recent_file(), 'r', encoding='utf-8') as f:
            for line in f:
                path = line.strip()
                if path and os.path.exists(path):
                    recent_paths.append(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.debug(f"Could not read recent configuration list: {e}")
    return recent_paths


def get_last_config_path() -> Optional[str]:
    """The most recently used configuration path that still exists."""
    recent = get_recent_config_paths()
    return recent[0] if recent else None


def save_recent_config_path(path: str) -> None:
    """
    Moves *path* to the front of the recent list, keeping at most
    MAX_RECENT_CONFIGS entries. Failures are logged and ignored.
    """
    path = os.path.abspath(path)
    recent = get_recent_config_paths()
    if path in recent:
        recent.remove(path)
    recent.insert(0, path)
    recent = recent[:config.MAX_RECENT_CONFIGS]

    try:
        os.makedirs(get_config_dir(), exist_ok=True)
        with open(_recent_file(), 'w', encoding='utf-8') as f:
            for p in recent:
                f.write(p + '\n')
    except OSError as e:
        logger.debug(f"Could not record recent configuration path: {e}")
