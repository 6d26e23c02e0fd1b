"""Data models for Bitbucket pull request notifications."""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, List, Optional


@dataclass
class Comment:
    """A single comment on a pull request."""
    id: str
    content: str = ''
    author: str = 'Unknown User'
    created_on: str = ''
    updated_on: str = ''
    is_read: bool = False

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'Comment':
        return cls(
            id=str(data['id']),
            content=data.get('content', ''),
            author=data.get('author', 'Unknown User'),
            created_on=data.get('created_on', ''),
            updated_on=data.get('updated_on', ''),
            is_read=bool(data.get('is_read', False))
        )


@dataclass
class PullRequest:
    """A pull request and the comments seen on it so far."""
    id: str
    title: str = ''
    author: str = 'Unknown User'
    repository: str = ''  # "<projectKey>/<repoSlug>"
    created_on: str = ''
    updated_on: str = ''
    status: str = 'UNKNOWN'
    approved: bool = False
    approval_status: str = 'UNAPPROVED'
    comments: List[Comment] = field(default_factory=list)
    unread_count: int = 0

    def find_comment(self, comment_id: str) -> Optional[Comment]:
        for comment in self.comments:
            if comment.id == comment_id:
                return comment
        return None

    def comment_ids(self) -> List[str]:
        return [comment.id for comment in self.comments]

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'PullRequest':
        return cls(
            id=str(data['id']),
            title=data.get('title', ''),
            author=data.get('author', 'Unknown User'),
            repository=data.get('repository', ''),
            created_on=data.get('created_on', ''),
            updated_on=data.get('updated_on', ''),
            status=data.get('status', 'UNKNOWN'),
            approved=bool(data.get('approved', False)),
            approval_status=data.get('approval_status', 'UNAPPROVED'),
            comments=[Comment.from_dict(c) for c in data.get('comments', [])],
            unread_count=int(data.get('unread_count', 0))
        )


@dataclass
class Repository:
    """A repository identified by its "<projectKey>/<repoSlug>" path."""
    slug: str
    name: str = ''
    pull_requests: List[PullRequest] = field(default_factory=list)
    unread_count: int = 0

    def find_pull_request(self, pr_id: str) -> Optional[PullRequest]:
        for pr in self.pull_requests:
            if pr.id == pr_id:
                return pr
        return None

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'Repository':
        return cls(
            slug=data['slug'],
            name=data.get('name') or data['slug'],
            pull_requests=[PullRequest.from_dict(pr) for pr in data.get('pull_requests', [])],
            unread_count=int(data.get('unread_count', 0))
        )


class SyncStatus(Enum):
    IDLE = 'idle'
    SYNCING = 'syncing'


@dataclass
class SyncState:
    """Process-wide synchronization state."""
    last_sync_time: Optional[str] = None  # ISO-8601
    status: SyncStatus = SyncStatus.IDLE
    dirty: bool = False  # badge consumers must refresh

    @property
    def in_progress(self) -> bool:
        return self.status is SyncStatus.SYNCING


@dataclass
class CommentNode:
    """A raw comment payload together with its nested replies."""
    payload: Dict
    replies: List['CommentNode'] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Dict) -> 'CommentNode':
        """Build the reply tree of a raw comment without recursion."""
        root = cls(payload=payload)
        stack = [root]
        while stack:
            node = stack.pop()
            children = node.payload.get('comments')
            if not isinstance(children, list):
                continue
            for child in children:
                if isinstance(child, dict):
                    child_node = cls(payload=child)
                    node.replies.append(child_node)
                    stack.append(child_node)
        return root
