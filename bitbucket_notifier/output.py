"""Console output of the tracked repositories and pull requests."""

from typing import List, Optional

from .models import Repository


# ANSI color codes
GREEN = '\033[92m'
YELLOW = '\033[93m'
RED = '\033[91m'
CYAN = '\033[96m'
BOLD = '\033[1m'
RESET = '\033[0m'


def _approval_color(approval_status: str) -> str:
    if approval_status == 'APPROVED':
        return GREEN
    if approval_status.startswith('APPROVED'):
        return YELLOW
    return RED


def format_summary(repositories: List[Repository], last_sync_time: Optional[str] = None) -> str:
    """Render repositories, their pull requests and unread counts as text.

    Args:
        repositories: Repositories to display
        last_sync_time: ISO-8601 time of the last successful sync

    Returns:
        Multi-line summary string
    """
    total_unread = sum(repo.unread_count for repo in repositories)
    lines = [
        "=" * 80,
        f"{BOLD}PULL REQUESTS{RESET} ({total_unread} unread comment(s))",
        f"Last sync: {last_sync_time or 'never'}",
        "=" * 80,
    ]

    if not repositories:
        lines.append("\nNo pull requests found.")
        return "\n".join(lines)

    for repo in sorted(repositories, key=lambda r: r.name.lower()):
        lines.append(f"\n{BOLD}{CYAN}{repo.name}{RESET} ({repo.slug}) - {repo.unread_count} unread")

        if not repo.pull_requests:
            lines.append("  No open pull requests")
            continue

        for pr in repo.pull_requests:
            color = _approval_color(pr.approval_status)
            unread = f" {BOLD}[{pr.unread_count} new]{RESET}" if pr.unread_count else ""
            lines.append(
                f"  #{pr.id} {pr.title} by {pr.author} "
                f"{color}{pr.approval_status}{RESET}{unread}"
            )

    return "\n".join(lines)


def print_summary(repositories: List[Repository], last_sync_time: Optional[str] = None):
    print("\n" + format_summary(repositories, last_sync_time))
