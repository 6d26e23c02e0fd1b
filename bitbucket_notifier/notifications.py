"""Notification delivery, preferences and history."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Dict, List

from .output import BOLD, CYAN, YELLOW, RESET
from .storage import KeyValueStorage, PersistenceError

SETTINGS_KEY = 'notification-settings'
NOTIFICATION_TITLE = 'Bitbucket Notifier'


class NotificationSink(ABC):
    """Boundary to the OS-level notification and badge mechanism."""

    @abstractmethod
    def send(self, title: str, body: str) -> None:
        """Show a notification."""

    @abstractmethod
    def set_badge(self, count: int) -> None:
        """Show the global unread count."""

    def play_sound(self) -> None:
        """Play a notification sound. Optional, silent by default."""


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the log."""

    def send(self, title: str, body: str) -> None:
        logging.info(f"[{title}] {body}")

    def set_badge(self, count: int) -> None:
        logging.info(f"Unread comments: {count}")


class ConsoleNotificationSink(NotificationSink):
    """Prints notifications to the terminal."""

    def send(self, title: str, body: str) -> None:
        print(f"{BOLD}{CYAN}{title}{RESET}: {body}", flush=True)

    def set_badge(self, count: int) -> None:
        print(f"{YELLOW}Unread comments: {count}{RESET}", flush=True)

    def play_sound(self) -> None:
        print('\a', end='', flush=True)


@dataclass
class NotificationPreferences:
    show_notifications: bool = True
    dock_badge_enabled: bool = True
    sound_enabled: bool = True
    history_enabled: bool = True

    @classmethod
    def from_dict(cls, data: Dict) -> 'NotificationPreferences':
        defaults = cls()
        return cls(**{
            name: bool(data.get(name, getattr(defaults, name)))
            for name in asdict(defaults)
        })


class NotificationCenter:
    """Dispatches new-comment notifications and badge updates to a sink."""

    def __init__(self, sink: NotificationSink, storage: KeyValueStorage = None):
        """Initialize the notification center.

        Args:
            sink: Where notifications and badge counts are delivered
            storage: Storage holding the notification preferences (optional)
        """
        self.sink = sink
        self.storage = storage
        self.preferences = NotificationPreferences()
        self.history: List[Dict] = []

    def add_notification(self, message: str):
        """Record a notification and deliver it according to the preferences."""
        if self.preferences.history_enabled:
            self.history.append({
                'message': message,
                'timestamp': datetime.now(timezone.utc).isoformat()
            })

        if self.preferences.show_notifications:
            try:
                self.sink.send(NOTIFICATION_TITLE, message)
            except Exception as e:
                logging.error(f"Failed to send notification: {e}")

        if self.preferences.sound_enabled:
            try:
                self.sink.play_sound()
            except Exception as e:
                logging.error(f"Failed to play notification sound: {e}")

    def update_badge(self, count: int):
        """Show the global unread count if the badge is enabled.

        Args:
            count: Number of unread comments across all repositories
        """
        if not self.preferences.dock_badge_enabled:
            return
        try:
            self.sink.set_badge(count)
            logging.debug(f"Updated badge: {count}")
        except Exception as e:
            logging.error(f"Failed to update badge: {e}")

    def clear_history(self):
        """Forget all recorded notifications."""
        self.history = []

    def save_settings(self):
        """Persist the current preferences. Write failures are logged, not raised."""
        if self.storage is None:
            return
        try:
            self.storage.put(SETTINGS_KEY, asdict(self.preferences))
        except PersistenceError as e:
            logging.error(f"Failed to save notification settings: {e}")

    def load_settings(self):
        """Load saved preferences; missing settings keep their defaults."""
        if self.storage is None:
            return
        settings = self.storage.get(SETTINGS_KEY)
        if not isinstance(settings, dict):
            return
        self.preferences = NotificationPreferences.from_dict(settings)
        logging.info("Loaded notification settings")
