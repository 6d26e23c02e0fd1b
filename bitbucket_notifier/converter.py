"""Conversion of raw Bitbucket payloads into local models.

Conversion never raises: malformed input degrades to placeholder entities so
that one bad record cannot block the rest of a batch.
"""

import hashlib
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from .models import Comment, PullRequest, Repository

UNKNOWN_USER = 'Unknown User'
UNKNOWN_PROJECT = 'UNKNOWN'
UNKNOWN_REPO = 'unknown-repo'
PLACEHOLDER_STATUS = 'ERROR'


class ConversionError(Exception):
    """Raised when a raw payload cannot be mapped to a local model."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def placeholder_id(raw) -> str:
    """Stable placeholder id so a malformed record maps to the same entity every sync.

    The raw id is used when the payload has one, so the placeholder keeps its
    identity when other fields of the payload change.
    """
    if isinstance(raw, dict) and raw.get('id') is not None:
        return f"error-{raw['id']}"
    digest = hashlib.md5(repr(raw).encode()).hexdigest()
    return f"error-{digest[:8]}"


def _to_iso(value, fallback: Optional[str] = None) -> str:
    """Normalize an epoch-millisecond or ISO-8601 timestamp.

    Raises:
        ConversionError: If the value cannot be interpreted as a timestamp
    """
    if value is None or value == '':
        return fallback or _now_iso()
    if isinstance(value, bool):
        raise ConversionError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()
        except (OverflowError, OSError, ValueError) as e:
            raise ConversionError(f"Invalid timestamp: {value!r}") from e
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace('Z', '+00:00')).isoformat()
        except ValueError as e:
            raise ConversionError(f"Invalid timestamp: {value!r}") from e
    raise ConversionError(f"Invalid timestamp: {value!r}")


def _nested(data, *keys):
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


# Ordered author extractors, first non-empty result wins
PR_AUTHOR_EXTRACTORS: List[Callable[[Dict], Optional[str]]] = [
    lambda raw: _nested(raw, 'author', 'user', 'displayName'),
    lambda raw: _nested(raw, 'author', 'user', 'name'),
    lambda raw: _nested(raw, 'author', 'displayName'),
    lambda raw: _nested(raw, 'author', 'name'),
]

COMMENT_AUTHOR_EXTRACTORS: List[Callable[[Dict], Optional[str]]] = [
    lambda raw: _nested(raw, 'author', 'displayName'),
    lambda raw: _nested(raw, 'author', 'name'),
]


def extract_author(raw: Dict, extractors: List[Callable[[Dict], Optional[str]]]) -> str:
    """Return the first name any extractor finds in raw.

    Args:
        raw: Raw payload
        extractors: Extractors tried in order

    Returns:
        The author name, or "Unknown User" if no extractor matches
    """
    for extractor in extractors:
        name = extractor(raw)
        if name:
            return str(name)
    return UNKNOWN_USER


def repository_path(project_key: Optional[str], repo_slug: Optional[str]) -> str:
    """Return "PROJECT/slug", substituting placeholders for missing parts."""
    return f"{project_key or UNKNOWN_PROJECT}/{repo_slug or UNKNOWN_REPO}"


def pull_request_location(raw: Dict) -> Tuple[str, str, str]:
    """Return (project_key, repo_slug, path) of the PR's target repository."""
    repository = _nested(raw, 'toRef', 'repository')
    project_key = _nested(repository, 'project', 'key') or UNKNOWN_PROJECT
    repo_slug = _nested(repository, 'slug') or UNKNOWN_REPO
    return project_key, repo_slug, repository_path(project_key, repo_slug)


def approval_summary(reviewers: Optional[List[Dict]]) -> Tuple[bool, str]:
    """Compute approval state from a reviewer list.

    Returns:
        Tuple of (approved, summary) where summary is "APPROVED",
        "APPROVED (k/n)" or "UNAPPROVED"
    """
    reviewers = [r for r in (reviewers or []) if isinstance(r, dict)]
    approved_count = sum(1 for r in reviewers if r.get('approved') is True)

    if approved_count == 0:
        return False, 'UNAPPROVED'
    if approved_count < len(reviewers):
        return True, f"APPROVED ({approved_count}/{len(reviewers)})"
    return True, 'APPROVED'


def truncate(text, limit: int = 50) -> str:
    """Cut text to limit characters, appending "..." only when something was cut.

    Args:
        text: Text to shorten; non-string values are converted with str()
        limit: Maximum number of characters kept

    Returns:
        The shortened text
    """
    text = '' if text is None else str(text)
    if len(text) <= limit:
        return text
    return f"{text[:limit]}..."


def placeholder_comment(raw=None) -> Comment:
    now = _now_iso()
    return Comment(
        id=placeholder_id(raw),
        content='Error loading comment',
        author='Unknown',
        created_on=now,
        updated_on=now,
        is_read=False
    )


def to_local_comment(raw: Dict, existing_comment: Optional[Comment] = None) -> Comment:
    """Convert a raw Bitbucket comment into a Comment.

    Args:
        raw: Raw comment payload (as flattened by the API client)
        existing_comment: Previously stored comment with the same id, if any

    Returns:
        The converted comment, or a placeholder if the payload is malformed
    """
    try:
        if not isinstance(raw, dict):
            raise ConversionError(f"Comment payload is not a mapping: {type(raw).__name__}")
        if raw.get('id') is None:
            raise ConversionError("Comment payload has no id")

        text = raw.get('text')
        if text is not None and not isinstance(text, str):
            raise ConversionError(f"Comment text is not a string: {type(text).__name__}")

        created_on = _to_iso(raw.get('createdDate'))
        return Comment(
            id=str(raw['id']),
            content=text or '',
            author=extract_author(raw, COMMENT_AUTHOR_EXTRACTORS),
            created_on=created_on,
            updated_on=_to_iso(raw.get('updatedDate'), fallback=created_on),
            is_read=existing_comment.is_read if existing_comment else False
        )
    except ConversionError as e:
        logging.warning(f"Error converting comment: {e}")
        return placeholder_comment(raw)


def to_local_comments(raw_comments: List[Dict], existing_pr: Optional[PullRequest] = None) -> List[Comment]:
    """Convert a batch of raw comments, preserving read state by id."""
    comments = []
    for raw in raw_comments or []:
        existing_comment = None
        if existing_pr is not None and isinstance(raw, dict) and raw.get('id') is not None:
            existing_comment = existing_pr.find_comment(str(raw['id']))
        comments.append(to_local_comment(raw, existing_comment))
    return comments


def merge_comments(existing: List[Comment], fetched: List[Comment]) -> List[Comment]:
    """Merge fetched comments into the existing ones by id.

    Existing order is kept, comments no longer in the payload are retained
    and comments seen for the first time are appended in payload order.
    """
    fetched_by_id = {}
    for comment in fetched:
        fetched_by_id.setdefault(comment.id, comment)

    merged = []
    seen = set()
    for comment in existing:
        merged.append(fetched_by_id.get(comment.id, comment))
        seen.add(comment.id)

    for comment in fetched:
        if comment.id not in seen:
            merged.append(comment)
            seen.add(comment.id)

    return merged


def placeholder_pull_request(raw=None, repository: str = 'unknown/unknown') -> PullRequest:
    now = _now_iso()
    return PullRequest(
        id=placeholder_id(raw),
        title='Error loading pull request',
        author='Unknown',
        repository=repository,
        created_on=now,
        updated_on=now,
        status=PLACEHOLDER_STATUS,
        approved=False,
        approval_status='UNKNOWN',
        comments=[],
        unread_count=0
    )


def to_local_pull_request(raw: Dict, comments: List[Dict],
                          existing_pr: Optional[PullRequest] = None) -> PullRequest:
    """Convert a raw Bitbucket pull request into a PullRequest.

    Comments are merged by id against existing_pr so that comments already
    read stay read even though the whole thread is refetched each sync.

    Args:
        raw: Raw pull request payload
        comments: Flat list of raw comments for this pull request
        existing_pr: Previously stored version of this pull request, if any

    Returns:
        The converted pull request, or a placeholder if the payload is malformed
    """
    try:
        if not isinstance(raw, dict):
            raise ConversionError(f"Pull request payload is not a mapping: {type(raw).__name__}")
        if raw.get('id') is None:
            raise ConversionError("Pull request payload has no id")

        _, _, path = pull_request_location(raw)
        approved, status = approval_summary(raw.get('reviewers'))

        fetched = to_local_comments(comments, existing_pr)
        merged = merge_comments(existing_pr.comments if existing_pr else [], fetched)

        created_on = _to_iso(raw.get('createdDate'))
        return PullRequest(
            id=str(raw['id']),
            title=raw.get('title') or 'Untitled Pull Request',
            author=extract_author(raw, PR_AUTHOR_EXTRACTORS),
            repository=path,
            created_on=created_on,
            updated_on=_to_iso(raw.get('updatedDate'), fallback=created_on),
            status=raw.get('state') or 'UNKNOWN',
            approved=approved,
            approval_status=status,
            comments=merged,
            unread_count=sum(1 for c in merged if not c.is_read)
        )
    except (ConversionError, AttributeError, TypeError, ValueError) as e:
        logging.error(f"Error converting pull request: {e}")
        repository = pull_request_location(raw)[2] if isinstance(raw, dict) else 'unknown/unknown'
        return placeholder_pull_request(raw, repository)


def to_local_repository(raw: Dict, pull_requests: List[PullRequest]) -> Repository:
    """Convert a raw Bitbucket repository into a Repository."""
    unread_count = sum(pr.unread_count for pr in pull_requests)
    try:
        if not isinstance(raw, dict):
            raise ConversionError(f"Repository payload is not a mapping: {type(raw).__name__}")

        repo_slug = raw.get('slug') or UNKNOWN_REPO
        return Repository(
            slug=repository_path(_nested(raw, 'project', 'key'), repo_slug),
            name=raw.get('name') or repo_slug,
            pull_requests=pull_requests,
            unread_count=unread_count
        )
    except ConversionError as e:
        logging.error(f"Error converting repository: {e}")
        return Repository(
            slug='unknown/unknown',
            name='Error loading repository',
            pull_requests=pull_requests,
            unread_count=unread_count
        )
