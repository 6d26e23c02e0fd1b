"""Bitbucket PR Notifier - polls Bitbucket Server for new pull request comments."""

from .models import Comment, PullRequest, Repository, SyncState, SyncStatus
from .api_client import BitbucketAPIClient, ApiError, TransportError
from .config import NotifierConfig
from .converter import ConversionError
from .notifications import NotificationCenter, ConsoleNotificationSink, LoggingNotificationSink
from .storage import KeyValueStorage, PersistenceError
from .store import ReconciliationStore
from .sync import SyncOrchestrator

__all__ = [
    'Comment',
    'PullRequest',
    'Repository',
    'SyncState',
    'SyncStatus',
    'BitbucketAPIClient',
    'ApiError',
    'TransportError',
    'NotifierConfig',
    'ConversionError',
    'NotificationCenter',
    'ConsoleNotificationSink',
    'LoggingNotificationSink',
    'KeyValueStorage',
    'PersistenceError',
    'ReconciliationStore',
    'SyncOrchestrator',
]
