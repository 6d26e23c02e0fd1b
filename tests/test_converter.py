"""
Unit tests for converting Bitbucket payloads into local models
"""

import pytest
from datetime import datetime
from bitbucket_notifier.converter import (
    approval_summary,
    merge_comments,
    pull_request_location,
    to_local_comment,
    to_local_comments,
    to_local_pull_request,
    to_local_repository,
    truncate,
)
from bitbucket_notifier.models import Comment, PullRequest


def make_raw_pr(pr_id=1, reviewers=None, **overrides):
    raw = {
        'id': pr_id,
        'title': 'Add feature',
        'state': 'OPEN',
        'createdDate': 1700000000000,
        'updatedDate': 1700000500000,
        'author': {'user': {'name': 'alice', 'displayName': 'Alice Smith'}},
        'toRef': {'repository': {'slug': 'repo', 'project': {'key': 'PROJ'}}},
        'reviewers': reviewers or [],
    }
    raw.update(overrides)
    return raw


def make_raw_comment(comment_id, text='Looks good'):
    return {
        'id': comment_id,
        'text': text,
        'author': {'name': 'bob', 'displayName': 'Bob Jones'},
        'createdDate': 1700000100000,
        'updatedDate': 1700000200000,
    }


def is_iso_timestamp(value):
    datetime.fromisoformat(value)
    return True


class TestCommentConversion:
    """Test cases for to_local_comment."""

    def test_converts_fields(self):
        comment = to_local_comment(make_raw_comment(101))

        assert comment.id == '101'
        assert comment.content == 'Looks good'
        assert comment.author == 'Bob Jones'
        assert comment.created_on == '2023-11-14T22:15:00+00:00'
        assert comment.updated_on == '2023-11-14T22:16:40+00:00'
        assert comment.is_read is False

    def test_author_falls_back_to_name(self):
        raw = make_raw_comment(1)
        raw['author'] = {'name': 'bob'}
        assert to_local_comment(raw).author == 'bob'

    def test_missing_author_is_unknown_user(self):
        raw = make_raw_comment(1)
        del raw['author']
        assert to_local_comment(raw).author == 'Unknown User'

    def test_preserves_read_flag(self):
        existing = Comment(id='101', is_read=True)
        assert to_local_comment(make_raw_comment(101), existing).is_read is True

    def test_missing_timestamps_use_now(self):
        comment = to_local_comment({'id': 1, 'text': 'hi'})
        assert is_iso_timestamp(comment.created_on)
        assert comment.updated_on == comment.created_on

    def test_accepts_iso_timestamps(self):
        comment = to_local_comment({'id': 1, 'createdDate': '2024-03-01T10:00:00Z'})
        assert comment.created_on == '2024-03-01T10:00:00+00:00'

    def test_malformed_comment_becomes_placeholder(self):
        """Test that a comment without id, author or timestamps does not raise."""
        comment = to_local_comment({'text': 'orphan'})

        assert comment.id.startswith('error-')
        assert comment.author == 'Unknown'
        assert comment.content == 'Error loading comment'
        assert is_iso_timestamp(comment.created_on)
        assert is_iso_timestamp(comment.updated_on)
        assert comment.is_read is False

    def test_unparseable_timestamp_becomes_placeholder(self):
        comment = to_local_comment({'id': 1, 'createdDate': 'yesterday'})
        assert comment.id.startswith('error-')

    def test_non_dict_becomes_placeholder(self):
        assert to_local_comment('garbage').id.startswith('error-')

    def test_placeholder_id_is_stable(self):
        """Test that the same malformed payload maps to the same placeholder."""
        assert to_local_comment({'text': 'x'}).id == to_local_comment({'text': 'x'}).id

    def test_non_string_text_becomes_placeholder(self):
        comment = to_local_comment(make_raw_comment(5, text=12345))

        assert comment.id == 'error-5'
        assert comment.content == 'Error loading comment'

    def test_placeholder_id_uses_raw_id(self):
        """Test that a malformed comment keeps its identity when other fields change."""
        first = to_local_comment({'id': 7, 'createdDate': 'yesterday'})
        second = to_local_comment({'id': 7, 'createdDate': 'last week', 'text': 'edited'})

        assert first.id == second.id == 'error-7'

    def test_batch_survives_bad_comment(self):
        comments = to_local_comments([make_raw_comment(1), None, make_raw_comment(2)])

        assert len(comments) == 3
        assert comments[0].id == '1'
        assert comments[1].id.startswith('error-')
        assert comments[2].id == '2'


class TestApprovalSummary:
    """Test cases for approval state computation."""

    def test_no_approvals(self):
        reviewers = [{'approved': False}] * 3
        assert approval_summary(reviewers) == (False, 'UNAPPROVED')

    def test_partial_approval(self):
        reviewers = [{'approved': True}, {'approved': True}, {'approved': False}]
        assert approval_summary(reviewers) == (True, 'APPROVED (2/3)')

    def test_full_approval(self):
        reviewers = [{'approved': True}] * 3
        assert approval_summary(reviewers) == (True, 'APPROVED')

    def test_no_reviewers(self):
        assert approval_summary([]) == (False, 'UNAPPROVED')
        assert approval_summary(None) == (False, 'UNAPPROVED')


class TestPullRequestConversion:
    """Test cases for to_local_pull_request."""

    def test_converts_fields(self):
        raw = make_raw_pr(reviewers=[{'approved': True}, {'approved': False}])
        pr = to_local_pull_request(raw, [make_raw_comment(1), make_raw_comment(2)])

        assert pr.id == '1'
        assert pr.title == 'Add feature'
        assert pr.author == 'Alice Smith'
        assert pr.repository == 'PROJ/repo'
        assert pr.status == 'OPEN'
        assert pr.approved is True
        assert pr.approval_status == 'APPROVED (1/2)'
        assert pr.created_on == '2023-11-14T22:13:20+00:00'
        assert [c.id for c in pr.comments] == ['1', '2']
        assert pr.unread_count == 2

    @pytest.mark.parametrize('author, expected', [
        ({'user': {'displayName': 'Nested Display', 'name': 'nested'}, 'displayName': 'Flat'}, 'Nested Display'),
        ({'user': {'name': 'nested'}, 'displayName': 'Flat'}, 'nested'),
        ({'displayName': 'Flat Display', 'name': 'flat'}, 'Flat Display'),
        ({'name': 'flat'}, 'flat'),
        ({}, 'Unknown User'),
    ])
    def test_author_fallback_chain(self, author, expected):
        pr = to_local_pull_request(make_raw_pr(author=author), [])
        assert pr.author == expected

    def test_missing_repository_defaults(self):
        raw = make_raw_pr()
        del raw['toRef']

        assert pull_request_location(raw) == ('UNKNOWN', 'unknown-repo', 'UNKNOWN/unknown-repo')
        assert to_local_pull_request(raw, []).repository == 'UNKNOWN/unknown-repo'

    def test_defaults_for_missing_title_and_state(self):
        raw = make_raw_pr()
        del raw['title']
        del raw['state']

        pr = to_local_pull_request(raw, [])
        assert pr.title == 'Untitled Pull Request'
        assert pr.status == 'UNKNOWN'

    def test_preserves_read_state_of_existing_comments(self):
        """Test that refetched comments keep their read flag."""
        existing = to_local_pull_request(make_raw_pr(), [make_raw_comment(1)])
        existing.comments[0].is_read = True

        pr = to_local_pull_request(make_raw_pr(), [make_raw_comment(1), make_raw_comment(2)], existing)

        assert pr.find_comment('1').is_read is True
        assert pr.find_comment('2').is_read is False
        assert pr.unread_count == 1

    def test_comments_missing_from_payload_are_kept(self):
        """Test that comments are never dropped once discovered."""
        existing = to_local_pull_request(make_raw_pr(), [make_raw_comment(1), make_raw_comment(2)])

        pr = to_local_pull_request(make_raw_pr(), [], existing)

        assert [c.id for c in pr.comments] == ['1', '2']

    def test_updated_comment_content_is_refreshed(self):
        existing = to_local_pull_request(make_raw_pr(), [make_raw_comment(1, 'old')])

        pr = to_local_pull_request(make_raw_pr(), [make_raw_comment(1, 'edited')], existing)

        assert pr.find_comment('1').content == 'edited'

    def test_malformed_pull_request_becomes_placeholder(self):
        """Test that a PR without id degrades to an ERROR placeholder."""
        pr = to_local_pull_request({'title': 'no id'}, [])

        assert pr.id.startswith('error-')
        assert pr.status == 'ERROR'
        assert pr.approval_status == 'UNKNOWN'
        assert pr.comments == []

    def test_non_dict_pull_request_becomes_placeholder(self):
        assert to_local_pull_request(None, []).status == 'ERROR'

    def test_placeholder_keeps_raw_id_and_repository(self):
        """Test that a PR failing conversion maps to one placeholder per PR."""
        first = to_local_pull_request(make_raw_pr(3, createdDate='yesterday'), [])
        second = to_local_pull_request(
            make_raw_pr(3, createdDate='yesterday', updatedDate=1700000900000), []
        )

        assert first.status == 'ERROR'
        assert first.id == second.id == 'error-3'
        assert first.repository == 'PROJ/repo'


class TestMergeComments:
    """Test cases for merging comments by id."""

    def test_existing_order_then_new(self):
        existing = [Comment(id='2'), Comment(id='1')]
        fetched = [Comment(id='1'), Comment(id='3'), Comment(id='2')]

        assert [c.id for c in merge_comments(existing, fetched)] == ['2', '1', '3']

    def test_duplicate_ids_in_payload_kept_once(self):
        merged = merge_comments([], [Comment(id='1'), Comment(id='1')])
        assert [c.id for c in merged] == ['1']


class TestRepositoryConversion:
    """Test cases for to_local_repository."""

    def test_converts_fields_and_sums_unread(self):
        prs = [PullRequest(id='1', unread_count=2), PullRequest(id='2', unread_count=3)]
        repo = to_local_repository({'slug': 'repo', 'name': 'My Repo', 'project': {'key': 'PROJ'}}, prs)

        assert repo.slug == 'PROJ/repo'
        assert repo.name == 'My Repo'
        assert repo.unread_count == 5
        assert repo.pull_requests == prs

    def test_name_defaults_to_slug(self):
        repo = to_local_repository({'slug': 'repo', 'project': {'key': 'PROJ'}}, [])
        assert repo.name == 'repo'

    def test_missing_project_defaults(self):
        assert to_local_repository({}, []).slug == 'UNKNOWN/unknown-repo'

    def test_malformed_repository_becomes_placeholder(self):
        repo = to_local_repository(None, [PullRequest(id='1', unread_count=1)])
        assert repo.slug == 'unknown/unknown'
        assert repo.unread_count == 1


class TestTruncate:

    def test_short_text_unchanged(self):
        assert truncate('short', 50) == 'short'

    def test_long_text_truncated(self):
        assert truncate('x' * 60, 50) == 'x' * 50 + '...'

    def test_none_text(self):
        assert truncate(None, 50) == ''

    def test_non_string_text(self):
        assert truncate(12345, 3) == '123...'
