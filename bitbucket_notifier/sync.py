"""Synchronization of the local store with Bitbucket."""

import logging
from datetime import datetime, timezone
from threading import Event, Lock, Thread, current_thread
from typing import Callable, Dict, List, Optional

from .api_client import BitbucketAPIClient, TransportError
from .converter import (
    PLACEHOLDER_STATUS, placeholder_id, pull_request_location, to_local_pull_request,
    to_local_repository, truncate
)
from .models import SyncStatus
from .notifications import NotificationCenter
from .store import ReconciliationStore

NOTIFICATION_PREVIEW_LENGTH = 50


class PeriodicTimer(Thread):
    """Daemon thread calling a function every interval until cancelled."""

    def __init__(self, interval: float, function: Callable[[], None]):
        super().__init__(name='bitbucket-periodic-sync', daemon=True)
        self.interval = interval
        self.function = function
        self._cancelled = Event()

    def run(self):
        while not self._cancelled.wait(self.interval):
            self.function()

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class SyncOrchestrator:
    """Runs sync passes against Bitbucket, one at a time.

    A pass fetches the relevant pull requests, merges them into the store and
    raises one notification per comment that was not known before.
    """

    def __init__(self, client: BitbucketAPIClient, store: ReconciliationStore,
                 notifier: NotificationCenter):
        """Initialize the orchestrator.

        Args:
            client: API client used to fetch pull requests and comments
            store: Store holding the local state
            notifier: Receives a message for every new comment
        """
        self.client = client
        self.store = store
        self.notifier = notifier
        self._state_lock = Lock()
        self._timer_lock = Lock()
        self._timer: Optional[PeriodicTimer] = None

    @property
    def is_syncing(self) -> bool:
        return self.store.sync_state.in_progress

    @property
    def is_periodic_sync_running(self) -> bool:
        return self._timer is not None and not self._timer.cancelled

    def _begin(self) -> bool:
        with self._state_lock:
            if self.store.sync_state.in_progress:
                return False
            self.store.sync_state.status = SyncStatus.SYNCING
            return True

    def _finish(self):
        with self._state_lock:
            self.store.sync_state.status = SyncStatus.IDLE

    def trigger_sync(self) -> bool:
        """Run a full sync pass unless one is already running.

        Returns:
            True if a pass ran to completion, False if it was skipped or aborted
        """
        if not self._begin():
            logging.info("Sync already in progress, skipping this request")
            return False

        try:
            self._run_pass()
            return True
        except TransportError as e:
            logging.error(f"Error syncing with Bitbucket, sync aborted: {e}")
            return False
        finally:
            self._finish()

    def _run_pass(self):
        steps = [
            ('relevant', self.client.fetch_all_relevant_requests),
            ('to review', self.client.fetch_review_requests),
            ('authored', self.client.fetch_authored_requests),
        ]

        for label, fetch in steps:
            raw_prs = fetch()
            logging.info(f"Processing {len(raw_prs)} {label} pull request(s)")
            self.process_pull_requests(raw_prs)

        self.backfill_repository_names()

        completed_at = datetime.now(timezone.utc).isoformat()
        self.store.record_sync_completed(completed_at)
        logging.info(f"Sync completed successfully at {completed_at}")

    def process_pull_requests(self, raw_prs: List[Dict]) -> List[str]:
        """Merge a batch of raw pull requests into the store.

        Pull requests are processed one after another so that each diff sees
        the store as it is right before that pull request's upsert.

        Args:
            raw_prs: Raw pull request payloads

        Returns:
            Notification messages raised for new comments
        """
        messages = []
        for raw_pr in raw_prs:
            if not isinstance(raw_pr, dict):
                logging.warning(f"Skipping malformed pull request payload: {raw_pr!r}")
                continue
            try:
                messages.extend(self._process_pull_request(raw_pr))
            except Exception as e:
                logging.error(f"Error processing PR {raw_pr.get('id')}: {e}", exc_info=True)
        return messages

    def _process_pull_request(self, raw_pr: Dict) -> List[str]:
        project_key, repo_slug, path = pull_request_location(raw_pr)

        # Read before conversion so read state and the diff use the current store
        existing_pr = self.store.find_pull_request(path, str(raw_pr.get('id')))

        raw_comments = self.client.fetch_comments(project_key, repo_slug, raw_pr.get('id'))
        pr = to_local_pull_request(raw_pr, raw_comments, existing_pr)

        messages = []
        if existing_pr is not None:
            known_ids = set(existing_pr.comment_ids())
            messages = [
                f"New comment on {path}/{pr.id}: {truncate(c.content, NOTIFICATION_PREVIEW_LENGTH)}"
                for c in pr.comments if c.id not in known_ids
            ]

        self.store.ensure_repository(path)
        self.store.upsert_pull_request(path, pr)
        if pr.status != PLACEHOLDER_STATUS:
            self.store.remove_pull_request(path, placeholder_id(raw_pr))

        for message in messages:
            try:
                self.notifier.add_notification(message)
            except Exception as e:
                logging.error(f"Error sending notification for {path}/{pr.id}: {e}", exc_info=True)

        if messages:
            logging.info(f"{len(messages)} new comment(s) on {path}/{pr.id}")
        return messages

    def backfill_repository_names(self) -> int:
        """Replace provisional repository names with the names from Bitbucket.

        Returns:
            Number of repositories renamed
        """
        try:
            raw_repos = self.client.fetch_recent_repositories()
        except TransportError as e:
            logging.warning(f"Could not fetch recent repositories: {e}")
            return 0

        renamed = 0
        for raw_repo in raw_repos:
            candidate = to_local_repository(raw_repo, [])
            existing = self.store.find_repository(candidate.slug)
            if existing is None or existing.name != existing.slug:
                continue
            if candidate.name and candidate.name != existing.name:
                self.store.rename_repository(candidate.slug, candidate.name)
                renamed += 1

        return renamed

    def _periodic_tick(self):
        if self.is_syncing:
            logging.info("Skipping periodic sync, a sync is already in progress")
            return

        logging.info("Running periodic sync with Bitbucket")
        try:
            self.trigger_sync()
        except Exception as e:
            logging.error(f"Periodic sync failed: {e}", exc_info=True)

    def start_periodic_sync(self, interval_seconds: float = 300):
        """Start syncing every interval_seconds, replacing any running timer."""
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = PeriodicTimer(interval_seconds, self._periodic_tick)
            self._timer.start()
        logging.info(f"Periodic sync started with interval of {interval_seconds} seconds")

    def stop_periodic_sync(self, wait: bool = False, timeout: Optional[float] = None):
        """Stop future periodic syncs.

        A pass already running is not interrupted.

        Args:
            wait: Block until a pass running on the timer thread has finished
            timeout: Maximum number of seconds to wait
        """
        with self._timer_lock:
            timer = self._timer
            if timer is None:
                return
            timer.cancel()
            self._timer = None

        if wait and timer is not current_thread() and timer.is_alive():
            timer.join(timeout)
        logging.info("Periodic sync stopped")
