"""
Configuration for the Bitbucket notifier.

Settings come from environment variables, which the entry script fills from
a .env file when one exists.
"""

import logging
import os
from dataclasses import dataclass

DEFAULT_STORAGE_FILE = ".bitbucket_notifier.json"
DEFAULT_POLL_INTERVAL = 300  # 5 minutes
MIN_POLL_INTERVAL = 10
DEFAULT_REQUEST_TIMEOUT = 30


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ('true', '1', 'yes')


def _env_number(name: str, default, cast=int, minimum=None):
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        number = cast(value)
    except ValueError:
        logging.warning(f"Invalid {name} value '{value}', using default: {default}")
        return default
    if minimum is not None and number < minimum:
        logging.warning(f"{name} must be at least {minimum}, using {minimum}")
        return minimum
    return number


@dataclass
class NotifierConfig:
    """Connection and polling settings."""
    base_url: str = ""
    username: str = ""
    api_key: str = ""
    poll_interval: int = DEFAULT_POLL_INTERVAL
    storage_file: str = DEFAULT_STORAGE_FILE
    use_storage: bool = True
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    run_once: bool = False

    @property
    def is_valid(self) -> bool:
        return bool(self.base_url and self.username and self.api_key)

    @classmethod
    def from_env(cls) -> 'NotifierConfig':
        """
        Build the configuration from environment variables.

        Invalid numeric values are logged and replaced by their defaults.
        """
        config = cls(
            base_url=os.environ.get('BITBUCKET_URL', '').strip().rstrip('/'),
            username=os.environ.get('BITBUCKET_USERNAME', '').strip(),
            api_key=os.environ.get('BITBUCKET_API_KEY', '').strip(),
            poll_interval=_env_number('POLL_INTERVAL', DEFAULT_POLL_INTERVAL, minimum=MIN_POLL_INTERVAL),
            storage_file=os.environ.get('STORAGE_FILE', '').strip() or DEFAULT_STORAGE_FILE,
            use_storage=_env_flag('USE_STORAGE', True),
            request_timeout=_env_number('REQUEST_TIMEOUT', DEFAULT_REQUEST_TIMEOUT, cast=float, minimum=1),
            run_once=_env_flag('RUN_ONCE', False)
        )
        logging.debug(f"Loaded configuration for {config.base_url or '<no url>'} "
                      f"(poll interval: {config.poll_interval}s)")
        return config
