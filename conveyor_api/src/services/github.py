"""
GitHub service for webhook validation and event normalization.
"""

import hmac
import hashlib
import logging
import re
from typing import Optional, Dict, Any, FrozenSet, Set

import httpx

from conveyor_api.src.config import get_settings
from conveyor_controller.src.models.run import EventKind, TriggerEvent

logger = logging.getLogger(__name__)

settings = get_settings()

ZERO_SHA = "0" * 40

# Pull request actions that change the head commit
PULL_REQUEST_ACTIONS = {"opened", "synchronize", "reopened"}

PULL_REF = re.compile(r"^refs/pull/(\d+)/head$")

class WebhookPayloadError(Exception):
    """Raised when a webhook payload lacks the fields a trigger needs."""
    pass

def verify_signature(payload: bytes, signature: str, secret: Optional[str] = None) -> bool:
    """Verify GitHub webhook signature."""
    secret = settings.github_webhook_secret if secret is None else secret
    if not secret:
        # Skip verification if no secret configured (development)
        return True

    expected = "sha256=" + hmac.new(
        secret.encode(),
        payload,
        hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(expected, signature or "")

def parse_push_payload(payload: Dict[str, Any]) -> Optional[TriggerEvent]:
    """
    Turn a push payload into a trigger event.
    Returns None for branch deletions, which have nothing to build.
    """
    repo = payload.get("repository") or {}
    head_commit = payload.get("head_commit") or {}

    if payload.get("deleted") or payload.get("after") == ZERO_SHA:
        return None

    ref = payload.get("ref", "")
    commit_sha = head_commit.get("id") or payload.get("after", "")
    if not ref or not commit_sha:
        raise WebhookPayloadError("Push payload has no ref or commit SHA")

    changed = set()
    for commit in payload.get("commits") or []:
        for key in ("added", "modified", "removed"):
            changed.update(commit.get(key) or [])

    return TriggerEvent(
        kind=EventKind.PUSH,
        ref=ref,
        commit_sha=commit_sha,
        # Push payloads only list changed files when commits are included
        changed_paths=frozenset(changed) if payload.get("commits") else None,
        repository=repo.get("full_name", ""),
        clone_url=repo.get("clone_url", ""),
        sender=(payload.get("pusher") or {}).get("name"),
    )

def parse_pull_request_payload(payload: Dict[str, Any]) -> Optional[TriggerEvent]:
    """
    Turn a pull_request payload into a trigger event on refs/pull/<n>/head.
    Returns None for actions that do not change the head commit.
    """
    if payload.get("action") not in PULL_REQUEST_ACTIONS:
        return None

    pull_request = payload.get("pull_request") or {}
    number = payload.get("number") or pull_request.get("number")
    head = pull_request.get("head") or {}
    commit_sha = head.get("sha", "")
    if not number or not commit_sha:
        raise WebhookPayloadError("Pull request payload has no number or head SHA")

    # Pull refs live on the base repository, also for forks
    repo = payload.get("repository") or (pull_request.get("base") or {}).get("repo") or {}

    return TriggerEvent(
        kind=EventKind.PULL_REQUEST,
        ref=f"refs/pull/{number}/head",
        commit_sha=commit_sha,
        changed_paths=None,
        repository=repo.get("full_name", ""),
        clone_url=repo.get("clone_url", ""),
        sender=(payload.get("sender") or {}).get("login"),
    )

class PullRequestFiles:
    """
    Looks up the files a pull request changes, so path rules can be applied
    to pull request events. Webhook payloads do not carry the file list.
    """

    page_size = 100

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        api_url: Optional[str] = None,
        token: Optional[str] = None,
        max_pages: Optional[int] = None,
    ):
        self.api_url = (api_url or settings.github_api_url).rstrip("/")
        self.token = settings.github_token if token is None else token
        self.max_pages = max_pages or settings.pull_request_file_pages
        self._client = client or httpx.AsyncClient(timeout=10)

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def changed_paths(self, repository: str, number: int) -> Optional[FrozenSet[str]]:
        """All paths touched by the pull request, or None if GitHub cannot tell us."""
        url = f"{self.api_url}/repos/{repository}/pulls/{number}/files"
        paths: Set[str] = set()

        for page in range(1, self.max_pages + 1):
            try:
                response = await self._client.get(
                    url,
                    params={"per_page": self.page_size, "page": page},
                    headers=self._headers(),
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.warning(f"Cannot list files of {repository}#{number}: {e}")
                return None

            files = response.json()
            for entry in files:
                paths.add(entry["filename"])
                # A rename touches both the old and the new location
                if entry.get("previous_filename"):
                    paths.add(entry["previous_filename"])
            if len(files) < self.page_size:
                break

        return frozenset(paths)

    async def resolve(self, event: TriggerEvent) -> TriggerEvent:
        """Fill in the changed paths of a pull request event."""
        match = PULL_REF.match(event.ref)
        if event.kind != EventKind.PULL_REQUEST or event.changed_paths is not None or not match:
            return event

        paths = await self.changed_paths(event.repository, int(match.group(1)))
        if paths is None:
            return event
        return event.model_copy(update={"changed_paths": paths})

    async def aclose(self):
        await self._client.aclose()
