"""Reconciliation store owning the local repository / pull request tree."""

import copy
import logging
from threading import RLock
from typing import Callable, List, Optional

from .models import PullRequest, Repository, SyncState
from .storage import KeyValueStorage, PersistenceError

SNAPSHOT_KEY = 'bitbucket-pr-data'


class ReconciliationStore:
    """Holds repositories, pull requests and comments along with their read state.

    Every mutation recomputes the unread counts and persists a snapshot.
    Readers get deep copies; changes only happen through the methods below.
    """

    def __init__(self, storage: KeyValueStorage,
                 on_badge_update: Optional[Callable[[int], None]] = None):
        """Initialize the store.

        Args:
            storage: Key-value storage used for snapshots
            on_badge_update: Called with the global unread count whenever it must be refreshed
        """
        self.storage = storage
        self.on_badge_update = on_badge_update
        self.sync_state = SyncState()
        self._repositories: List[Repository] = []
        self._lock = RLock()

    # Read accessors

    @property
    def repositories(self) -> List[Repository]:
        with self._lock:
            return copy.deepcopy(self._repositories)

    @property
    def total_unread_count(self) -> int:
        with self._lock:
            return sum(repo.unread_count for repo in self._repositories)

    @property
    def last_sync_time(self) -> Optional[str]:
        return self.sync_state.last_sync_time

    def find_repository(self, slug: str) -> Optional[Repository]:
        with self._lock:
            repo = self._get_repository(slug)
            return copy.deepcopy(repo) if repo else None

    def find_pull_request(self, repo_slug: str, pr_id: str) -> Optional[PullRequest]:
        with self._lock:
            pr = self._get_pull_request(repo_slug, pr_id)
            return copy.deepcopy(pr) if pr else None

    def _get_repository(self, slug: str) -> Optional[Repository]:
        for repo in self._repositories:
            if repo.slug == slug:
                return repo
        return None

    def _get_pull_request(self, repo_slug: str, pr_id: str) -> Optional[PullRequest]:
        repo = self._get_repository(repo_slug)
        if repo is None:
            return None
        return repo.find_pull_request(pr_id)

    # Mutations

    def ensure_repository(self, slug: str, name: Optional[str] = None) -> bool:
        """Create the repository if it does not exist yet.

        Args:
            slug: Repository path "<projectKey>/<repoSlug>"
            name: Display name, defaults to the path until a real name is known

        Returns:
            True if the repository was created
        """
        with self._lock:
            if self._get_repository(slug) is not None:
                return False
            self._repositories.append(Repository(slug=slug, name=name or slug))
            logging.debug(f"Created repository {slug}")
            self._commit()
            return True

    def upsert_repository(self, repository: Repository):
        """Insert a repository or replace the one with the same slug."""
        with self._lock:
            repository = copy.deepcopy(repository)
            for index, repo in enumerate(self._repositories):
                if repo.slug == repository.slug:
                    self._repositories[index] = repository
                    break
            else:
                self._repositories.append(repository)
            self._commit()

    def upsert_pull_request(self, repo_slug: str, pull_request: PullRequest) -> bool:
        """Insert a pull request or replace the one with the same id.

        Returns:
            False if the repository is unknown, True otherwise
        """
        with self._lock:
            repo = self._get_repository(repo_slug)
            if repo is None:
                logging.warning(f"Cannot store PR {pull_request.id}: unknown repository {repo_slug}")
                return False

            pull_request = copy.deepcopy(pull_request)
            for index, pr in enumerate(repo.pull_requests):
                if pr.id == pull_request.id:
                    repo.pull_requests[index] = pull_request
                    break
            else:
                repo.pull_requests.append(pull_request)
            self._commit()
            return True

    def remove_pull_request(self, repo_slug: str, pr_id: str) -> bool:
        """Remove a pull request from a repository.

        Returns:
            True if the pull request existed
        """
        with self._lock:
            repo = self._get_repository(repo_slug)
            if repo is None:
                return False
            remaining = [pr for pr in repo.pull_requests if pr.id != pr_id]
            if len(remaining) == len(repo.pull_requests):
                return False
            repo.pull_requests = remaining
            self._commit()
            return True

    def rename_repository(self, slug: str, name: str) -> bool:
        """Set the display name of a tracked repository.

        Args:
            slug: Repository path ("PROJECT/slug")
            name: New display name, ignored if empty

        Returns:
            True if the repository exists and was renamed
        """
        with self._lock:
            repo = self._get_repository(slug)
            if repo is None or not name:
                return False
            repo.name = name
            self._commit()
            return True

    def set_comment_read(self, repo_slug: str, pr_id: str, comment_id: str, read: bool = True) -> bool:
        """Mark a single comment as read or unread.

        Returns:
            True if the comment exists
        """
        with self._lock:
            pr = self._get_pull_request(repo_slug, pr_id)
            comment = pr.find_comment(comment_id) if pr else None
            if comment is None:
                return False
            comment.is_read = read
            self.sync_state.dirty = True
            self._commit()
            self.publish_badge()
            return True

    def mark_all_read(self, repo_slug: str, pr_id: str) -> Optional[PullRequest]:
        """Mark every comment of a pull request as read.

        Returns:
            A copy of the updated pull request, or None if it does not exist
        """
        with self._lock:
            pr = self._get_pull_request(repo_slug, pr_id)
            if pr is None:
                return None
            for comment in pr.comments:
                comment.is_read = True
            self.sync_state.dirty = True
            self._commit()
            self.publish_badge()
            return copy.deepcopy(pr)

    def clear_all_unread(self):
        """Mark every comment in every repository as read."""
        with self._lock:
            for repo in self._repositories:
                for pr in repo.pull_requests:
                    for comment in pr.comments:
                        comment.is_read = True
                    pr.unread_count = 0
                repo.unread_count = 0
            self.sync_state.dirty = True
            self._commit()
            self.publish_badge()

    def record_sync_completed(self, timestamp: str):
        """Store the completion time of a successful sync pass."""
        with self._lock:
            self.sync_state.last_sync_time = timestamp
            self.sync_state.dirty = True
            self._commit()
            self.publish_badge()

    def recompute_counts(self):
        """Recalculate unread counts at pull request and repository level."""
        with self._lock:
            for repo in self._repositories:
                for pr in repo.pull_requests:
                    pr.unread_count = sum(1 for c in pr.comments if not c.is_read)
                repo.unread_count = sum(pr.unread_count for pr in repo.pull_requests)

    def _commit(self):
        self.recompute_counts()
        self.save()

    def publish_badge(self):
        """Send the global unread count to the badge callback if it is stale."""
        with self._lock:
            if not self.sync_state.dirty:
                return
            self.sync_state.dirty = False
            total = self.total_unread_count

        if self.on_badge_update is not None:
            self.on_badge_update(total)

    # Persistence

    def save(self) -> bool:
        """Persist the repository tree and last sync time.

        Returns:
            False if the snapshot could not be written
        """
        with self._lock:
            snapshot = {
                'repositories': [repo.to_dict() for repo in self._repositories],
                'lastSyncTime': self.sync_state.last_sync_time
            }
            try:
                self.storage.put(SNAPSHOT_KEY, snapshot)
            except PersistenceError as e:
                logging.warning(f"Error saving PR data: {e}")
                return False
            return True

    def load(self) -> bool:
        """Restore the last snapshot.

        Returns:
            True if a snapshot was restored, False on first run or unreadable data
        """
        snapshot = self.storage.get(SNAPSHOT_KEY)
        if snapshot is None:
            logging.info("No stored PR data found, starting with an empty state")
            return False

        try:
            repositories = [Repository.from_dict(r) for r in snapshot.get('repositories', [])]
            last_sync_time = snapshot.get('lastSyncTime')
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logging.warning(f"Error loading PR data, starting with an empty state: {e}")
            return False

        with self._lock:
            self._repositories = repositories
            self.sync_state.last_sync_time = last_sync_time
            self.recompute_counts()

        logging.info(f"Loaded {len(repositories)} repositories from storage")
        return True
