"""
WaniKani API client.

Issues authenticated requests, follows cursor pagination and classifies
failures into the errors of :mod:`wanikani_cache.errors`. It never touches the
cache; callers decide what to persist.
"""
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from .errors import AuthError, HttpError, NetworkError, RateLimitError

logger = logging.getLogger(__name__)

WANIKANI_API = os.environ.get("WK_API_BASE", "https://api.wanikani.com/v2")
API_REVISION = "20170710"
# The assignments endpoint accepts at most this many subject_ids per request.
MAX_IDS_PER_REQUEST = 1000
REQUEST_TIMEOUT = 15


@dataclass(frozen=True)
class RetryPolicy:
    """How many times a single resource fetch may be attempted.

    Only transport failures and 5xx answers are retried. Missing credentials
    and 429 answers always surface on the first attempt.
    """
    attempts: int = 1
    backoff: float = 0.0


NO_RETRY = RetryPolicy()


class WaniKaniClient:
    """Client for the WaniKani v2 API"""

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = WANIKANI_API,
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.token = token if token is not None else os.environ.get("WANIKANI_API_TOKEN")
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self._sleep = sleep

    @property
    def has_credentials(self) -> bool:
        return bool(self.token)

    def require_credentials(self) -> None:
        if not self.token:
            raise AuthError("WANIKANI_API_TOKEN not set in environment")

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}{path}"

    def _relative(self, url: Optional[str]) -> Optional[str]:
        # next_url cursors come back absolute; keep paths relative to our base.
        if not url:
            return None
        if url.startswith(self.base_url):
            return url[len(self.base_url):]
        return url

    def _request(self, path: str) -> Any:
        self.require_credentials()
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Wanikani-Revision": API_REVISION,
        }
        try:
            response = self.session.get(self._url(path), headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.debug("GET %s failed: %s", path, e)
            raise NetworkError(f"WaniKani API request failed: {e}") from e

        logger.debug("GET %s -> %s", path, response.status_code)
        if response.status_code == 429:
            raise RateLimitError(retry_after=_retry_after(response))
        if not 200 <= response.status_code < 300:
            raise HttpError(response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"WaniKani API returned an unreadable body: {e}") from e

    def fetch_resource(self, path: str, retry: RetryPolicy = NO_RETRY) -> Any:
        """Fetch one resource and return the parsed JSON body."""
        attempt = 1
        while True:
            try:
                return self._request(path)
            except (NetworkError, HttpError) as e:
                retryable = isinstance(e, NetworkError) or (
                    not isinstance(e, RateLimitError) and e.status >= 500
                )
                if not retryable or attempt >= retry.attempts:
                    raise
                logger.warning("Retrying %s after error (attempt %d/%d): %s",
                               path, attempt, retry.attempts, e)
                if retry.backoff:
                    self._sleep(retry.backoff * attempt)
                attempt += 1

    def fetch_paginated(self, path: str) -> List[Any]:
        """Follow ``pages.next_url`` from ``path`` and concatenate every page's ``data``."""
        items: List[Any] = []
        next_path: Optional[str] = path
        while next_path:
            result = self.fetch_resource(next_path)
            items.extend(result.get("data") or [])
            next_path = self._relative((result.get("pages") or {}).get("next_url"))
        return items

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def fetch_user(self) -> Dict[str, Any]:
        return self.fetch_resource("/user")["data"]

    def fetch_review_assignments(self) -> List[Dict[str, Any]]:
        return self.fetch_paginated("/assignments?immediately_available_for_review=true")

    def fetch_subjects(self, levels: Iterable[int], types: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        path = "/subjects?levels=" + ",".join(str(level) for level in levels)
        type_list = list(types) if types else []
        if type_list:
            path += "&types=" + ",".join(type_list)
        return self.fetch_paginated(path)

    def fetch_subject(self, subject_id: int) -> Dict[str, Any]:
        return self.fetch_resource(f"/subjects/{subject_id}")

    def fetch_assignments_for_subjects(self, subject_ids: Iterable[int]) -> Dict[int, Dict[str, Any]]:
        """
        Look up the learner's assignment for each subject id.

        Ids are sent in chunks of at most MAX_IDS_PER_REQUEST, each chunk paginated
        on its own. Subjects without an assignment are absent from the result.
        """
        ids = list(dict.fromkeys(subject_ids))
        assignments: Dict[int, Dict[str, Any]] = {}
        for i in range(0, len(ids), MAX_IDS_PER_REQUEST):
            chunk = ids[i:i + MAX_IDS_PER_REQUEST]
            path = "/assignments?subject_ids=" + ",".join(str(s) for s in chunk)
            for assignment in self.fetch_paginated(path):
                data = assignment.get("data") or {}
                assignments[data["subject_id"]] = {
                    "srs_stage": data.get("srs_stage"),
                    "unlocked_at": data.get("unlocked_at"),
                    "started_at": data.get("started_at"),
                    "passed_at": data.get("passed_at"),
                    "burned_at": data.get("burned_at"),
                }
        return assignments


def _retry_after(response: Any) -> Optional[float]:
    value = response.headers.get("Retry-After") if response.headers else None
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
