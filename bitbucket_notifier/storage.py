"""Persistent key-value storage for notifier state."""

import os
import json
import logging
import tempfile
from typing import Any, Dict


class PersistenceError(Exception):
    """Raised when the storage file cannot be written."""


class KeyValueStorage:
    """Keeps opaque keyed records in a single JSON file."""

    def __init__(self, storage_file: str = '.bitbucket_notifier.json', enabled: bool = True):
        """Initialize the storage.

        Args:
            storage_file: Path to the JSON file holding all records
            enabled: Whether records are written to disk (in-memory only otherwise)
        """
        self.storage_file = storage_file
        self.enabled = enabled
        self.records = self._load()

    def _load(self) -> Dict:
        """Load records from file."""
        if not self.enabled or not os.path.exists(self.storage_file):
            return {}

        try:
            with open(self.storage_file, 'r', encoding='utf-8') as f:
                records = json.load(f)
        except (OSError, ValueError) as e:
            logging.warning(f"Failed to load storage from {self.storage_file}: {e}")
            return {}

        if not isinstance(records, dict):
            logging.warning(f"Ignoring storage file {self.storage_file}: unexpected content")
            return {}

        logging.info(f"Loaded storage from {self.storage_file} with {len(records)} record(s)")
        return records

    def save(self):
        """Write all records to file.

        The records are written to a temporary file next to the storage file
        and moved into place, so a failed write leaves the previous file intact.

        Raises:
            PersistenceError: If the file cannot be written
        """
        if not self.enabled:
            return

        directory = os.path.dirname(os.path.abspath(self.storage_file))
        temp_path = None
        try:
            fd, temp_path = tempfile.mkstemp(dir=directory, prefix='.storage-', suffix='.tmp')
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(self.records, f, indent=2, ensure_ascii=False)
            os.replace(temp_path, self.storage_file)
        except (OSError, TypeError, ValueError) as e:
            if temp_path is not None and os.path.exists(temp_path):
                os.remove(temp_path)
            raise PersistenceError(f"Failed to save storage to {self.storage_file}: {e}") from e

        logging.debug(f"Saved storage to {self.storage_file} with {len(self.records)} record(s)")

    def get(self, key: str, default: Any = None) -> Any:
        """Get a record, or default if it does not exist."""
        return self.records.get(key, default)

    def put(self, key: str, value: Any):
        """Store a record and write it to disk.

        If the write fails the previous value of the record is restored, so a
        value that cannot be serialized does not block later writes.

        Args:
            key: Record key
            value: JSON-serializable value

        Raises:
            PersistenceError: If the file cannot be written
        """
        missing = key not in self.records
        previous = self.records.get(key)
        self.records[key] = value
        try:
            self.save()
        except PersistenceError:
            if missing:
                del self.records[key]
            else:
                self.records[key] = previous
            raise

    def delete(self, key: str):
        """Remove a record if present and write the change to disk."""
        if self.records.pop(key, None) is not None:
            self.save()

    def __contains__(self, key: str) -> bool:
        return key in self.records
