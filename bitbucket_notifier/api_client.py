"""Bitbucket Server API client for fetching pull requests and comments."""

import logging
from typing import Dict, List
from concurrent.futures import ThreadPoolExecutor
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .models import CommentNode

API_PREFIX = '/rest/api/latest'


class TransportError(Exception):
    """Raised when a request cannot be completed."""


class ApiError(TransportError):
    """Raised when the API answers with a non-2xx status."""

    def __init__(self, status_code: int, body: str, endpoint: str = ''):
        self.status_code = status_code
        self.body = body
        self.endpoint = endpoint
        super().__init__(f"API error ({status_code}) for {endpoint}: {body}")


def flatten_comment_tree(roots: List[Dict]) -> List[Dict]:
    """Flatten comments and their nested replies depth-first.

    Parents come before their replies and sibling order is preserved.

    Args:
        roots: Raw top-level comment payloads

    Returns:
        Flat list of comment payloads with id, text, author and dates
    """
    flat = []
    stack = [CommentNode.from_payload(root) for root in reversed(roots) if isinstance(root, dict)]

    while stack:
        node = stack.pop()
        comment = node.payload
        flat.append({
            'id': comment.get('id'),
            'text': comment.get('text'),
            'author': comment.get('author'),
            'createdDate': comment.get('createdDate'),
            'updatedDate': comment.get('updatedDate') or comment.get('createdDate')
        })
        stack.extend(reversed(node.replies))

    return flat


class BitbucketAPIClient:
    """Handles Bitbucket Server REST requests with retry logic and pagination."""

    def __init__(self, base_url: str, username: str, api_key: str, timeout: float = 30):
        """Initialize the Bitbucket API client.

        Args:
            base_url: Bitbucket server URL, e.g. https://bitbucket.example.com
            username: Bitbucket username
            api_key: Personal access token or API key for the user
            timeout: Timeout in seconds for each request
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = requests.Session()

        adapter = HTTPAdapter(
            pool_connections=10,
            pool_maxsize=10,
            max_retries=Retry(
                total=3,
                backoff_factor=0.3,
                status_forcelist=[500, 502, 503, 504]
            )
        )
        self.session.mount('https://', adapter)
        self.session.mount('http://', adapter)

        self.session.auth = (username, api_key)
        self.session.headers.update({
            'Content-Type': 'application/json',
            'Accept': 'application/json'
        })
        logging.info(f"Initialized Bitbucket API client for {self.base_url} as '{username}'")

    def request(self, endpoint: str, params: Dict = None) -> Dict:
        """Make a GET request against the REST API.

        Args:
            endpoint: Endpoint path below /rest/api/latest
            params: Query parameters

        Returns:
            Parsed JSON response

        Raises:
            ApiError: If the server responds with a non-2xx status
            TransportError: If the request fails or the body is not JSON
        """
        url = f"{self.base_url}{API_PREFIX}{endpoint}"
        logging.debug(f"GET {url} {params or ''}")

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"Request to {endpoint} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise ApiError(response.status_code, response.text, endpoint)

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {endpoint}: {e}") from e

    def get_paginated(self, endpoint: str, params: Dict = None) -> List[Dict]:
        """Fetch all pages of a paged Bitbucket endpoint.

        Args:
            endpoint: Endpoint path below /rest/api/latest
            params: Query parameters

        Returns:
            List of all values from all pages
        """
        results = []
        params = dict(params or {})
        params['limit'] = 100
        start = 0

        while True:
            params['start'] = start
            page = self.request(endpoint, params)
            results.extend(page.get('values', []))

            next_start = page.get('nextPageStart')
            if page.get('isLastPage', True) or next_start is None:
                break
            if next_start <= start:
                logging.warning(f"Pagination of {endpoint} did not advance past {start}, stopping")
                break

            start = next_start

        logging.debug(f"Fetched {len(results)} total items from {endpoint}")
        return results

    def fetch_review_requests(self) -> List[Dict]:
        """Fetch open pull requests where the user is a reviewer."""
        return self.get_paginated('/dashboard/pull-requests', {'state': 'OPEN', 'role': 'REVIEWER'})

    def fetch_authored_requests(self) -> List[Dict]:
        """Fetch open pull requests authored by the user."""
        return self.get_paginated('/dashboard/pull-requests', {'state': 'OPEN', 'role': 'AUTHOR'})

    def fetch_all_relevant_requests(self) -> List[Dict]:
        """Fetch reviewer and author pull requests concurrently.

        Returns:
            Pull requests from both roles, deduplicated by id (first occurrence wins)
        """
        with ThreadPoolExecutor(max_workers=2) as executor:
            future_review = executor.submit(self.fetch_review_requests)
            future_authored = executor.submit(self.fetch_authored_requests)

            review_requests = future_review.result()
            authored_requests = future_authored.result()

        merged = []
        seen_ids = set()
        for pr in review_requests + authored_requests:
            pr_id = pr.get('id')
            if pr_id in seen_ids:
                continue
            seen_ids.add(pr_id)
            merged.append(pr)

        logging.info(f"Found {len(merged)} relevant pull request(s) "
                     f"({len(review_requests)} to review, {len(authored_requests)} authored)")
        return merged

    def fetch_pull_requests_for_repository(self, project_key: str, repo_slug: str) -> List[Dict]:
        """Fetch open pull requests of a single repository."""
        return self.get_paginated(
            f"/projects/{project_key}/repos/{repo_slug}/pull-requests",
            {'state': 'OPEN'}
        )

    def fetch_comments(self, project_key: str, repo_slug: str, pr_id) -> List[Dict]:
        """Fetch all comments of a pull request as a flat list.

        Tries the comments endpoint first and falls back to the activity log.
        Never raises: a pull request whose comments cannot be fetched yields
        an empty list.

        Args:
            project_key: Project key of the target repository
            repo_slug: Repository slug
            pr_id: Pull request id

        Returns:
            Flat list of comments including nested replies
        """
        pr_endpoint = f"/projects/{project_key}/repos/{repo_slug}/pull-requests/{pr_id}"

        try:
            comments = self.get_paginated(f"{pr_endpoint}/comments")
            return flatten_comment_tree(comments)
        except TransportError as e:
            logging.debug(f"Comments endpoint unavailable for PR {pr_id}, using activities: {e}")

        try:
            activities = self.get_paginated(f"{pr_endpoint}/activities")
        except TransportError as e:
            logging.error(f"Error fetching activities for PR {pr_id}: {e}")
            return []

        roots = [
            activity['comment'] for activity in activities
            if activity.get('action') == 'COMMENTED' and activity.get('comment')
        ]
        return flatten_comment_tree(roots)

    def fetch_recent_repositories(self) -> List[Dict]:
        """Fetch repositories the user has accessed recently."""
        return self.get_paginated('/profile/recent/repos')

    def close(self):
        """Close the underlying HTTP session."""
        self.session.close()
