"""
Unit tests for console output
"""

from bitbucket_notifier.models import PullRequest, Repository
from bitbucket_notifier.output import format_summary, print_summary


class TestFormatSummary:
    """Test cases for the repository summary."""

    def test_empty_summary(self):
        summary = format_summary([], None)
        assert 'Last sync: never' in summary
        assert 'No pull requests found.' in summary

    def test_lists_repositories_and_pull_requests(self):
        repositories = [
            Repository(slug='PROJ/zeta', name='Zeta', unread_count=0),
            Repository(slug='PROJ/alpha', name='Alpha', unread_count=2, pull_requests=[
                PullRequest(id='7', title='Fix login', author='Alice',
                            approval_status='APPROVED (1/2)', unread_count=2),
                PullRequest(id='8', title='Bump deps', author='Bob', approval_status='UNAPPROVED'),
            ]),
        ]

        summary = format_summary(repositories, '2024-01-01T00:00:00+00:00')

        assert '(2 unread comment(s))' in summary
        assert 'Last sync: 2024-01-01T00:00:00+00:00' in summary
        assert summary.index('Alpha') < summary.index('Zeta')
        assert '#7 Fix login by Alice' in summary
        assert 'APPROVED (1/2)' in summary
        assert '[2 new]' in summary
        assert '[0 new]' not in summary
        assert 'No open pull requests' in summary

    def test_print_summary(self, capsys):
        print_summary([], None)
        assert 'PULL REQUESTS' in capsys.readouterr().out
