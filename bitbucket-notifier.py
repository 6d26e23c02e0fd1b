#!/usr/bin/env python3
"""
Bitbucket PR Notifier
Polls Bitbucket Server for new comments on your pull requests and reviews.
"""

import os
import sys
import time
import logging
from dotenv import load_dotenv

from bitbucket_notifier.api_client import BitbucketAPIClient
from bitbucket_notifier.config import NotifierConfig
from bitbucket_notifier.notifications import NotificationCenter, ConsoleNotificationSink
from bitbucket_notifier.output import print_summary
from bitbucket_notifier.storage import KeyValueStorage
from bitbucket_notifier.store import ReconciliationStore
from bitbucket_notifier.sync import SyncOrchestrator

# Configure logging (can be overridden by LOG_LEVEL environment variable)
log_level = os.environ.get('LOG_LEVEL', 'INFO').upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format='%(asctime)s %(levelname)s: %(message)s',
    datefmt='%m/%d/%Y %I:%M:%S %p'
)


def build_notifier(config: NotifierConfig, sink=None):
    """Wire storage, store, client, notification center and orchestrator.

    Args:
        config: Validated configuration
        sink: Notification sink (defaults to console output)

    Returns:
        Tuple of (store, orchestrator)
    """
    storage = KeyValueStorage(config.storage_file, enabled=config.use_storage)

    notifier = NotificationCenter(sink or ConsoleNotificationSink(), storage)
    notifier.load_settings()

    store = ReconciliationStore(storage, on_badge_update=notifier.update_badge)
    store.load()

    client = BitbucketAPIClient(config.base_url, config.username, config.api_key,
                                timeout=config.request_timeout)
    return store, SyncOrchestrator(client, store, notifier)


def main():
    """Main entry point for the script."""
    # Load environment variables from .env file if it exists
    load_dotenv()

    print("Bitbucket PR Notifier")
    print("="*80)

    config = NotifierConfig.from_env()
    if not config.is_valid:
        logging.error("BITBUCKET_URL, BITBUCKET_USERNAME and BITBUCKET_API_KEY are required")
        sys.exit(1)

    store, orchestrator = build_notifier(config)

    print(f"Syncing pull requests from {config.base_url}...")
    orchestrator.trigger_sync()
    print_summary(store.repositories, store.last_sync_time)

    if config.run_once:
        orchestrator.client.close()
        return

    orchestrator.start_periodic_sync(config.poll_interval)
    print(f"\nPolling every {config.poll_interval} seconds. Press Ctrl+C to stop.")

    last_seen = store.last_sync_time
    try:
        while True:
            time.sleep(1)
            if store.last_sync_time != last_seen:
                last_seen = store.last_sync_time
                print_summary(store.repositories, last_seen)
    except KeyboardInterrupt:
        print("\nStopping...")
    finally:
        # Let a pass running on the timer thread finish before the final save
        orchestrator.stop_periodic_sync(wait=True)
        store.save()
        orchestrator.client.close()


if __name__ == "__main__":
    main()
