from conveyor_api.src.services.github import (
    verify_signature,
    parse_push_payload,
    parse_pull_request_payload,
    WebhookPayloadError,
    PullRequestFiles,
)

__all__ = [
    "verify_signature",
    "parse_push_payload",
    "parse_pull_request_payload",
    "WebhookPayloadError",
    "PullRequestFiles",
]
