"""
Webhook payload schemas - validated shape of each provider's event body.
Models allow unknown fields: providers add fields faster than we track them,
so only the fields the pipeline relies on are checked.
"""
from enum import Enum
from typing import Annotated, Any, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, StringConstraints, model_validator


def _require_number(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("must be a number")
    return value


NonEmptyStr = Annotated[str, StringConstraints(strict=True, min_length=1)]
Number = Annotated[Any, AfterValidator(_require_number)]


class WebhookSource(str, Enum):
    STRIPE = "stripe"
    GITHUB = "github"
    CLERK = "clerk"
    TEST = "test"


# (signature header, event-type header) per source; None means the type lives in the body
SOURCE_HEADERS: dict[WebhookSource, tuple[str, Optional[str]]] = {
    WebhookSource.STRIPE: ("stripe-signature", None),
    WebhookSource.GITHUB: ("x-hub-signature-256", "x-github-event"),
    WebhookSource.CLERK: ("svix-signature", None),
    WebhookSource.TEST: ("x-test-signature", "x-test-event"),
}


class _ProviderModel(BaseModel):
    model_config = ConfigDict(extra="allow")


# --- Stripe ---

class StripeEventPayload(_ProviderModel):
    """Stripe event envelope."""
    id: NonEmptyStr
    object: Literal["event"]
    type: NonEmptyStr
    data: dict[str, Any]


# --- GitHub ---

class GitHubEventPayload(_ProviderModel):
    """Fields common to every GitHub delivery."""
    sender: dict[str, Any]
    repository: Optional[dict[str, Any]] = None
    organization: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def _require_repository_or_organization(self):
        if self.repository is None and self.organization is None:
            raise ValueError("Missing repository or organization")
        return self


class GitHubPushPayload(GitHubEventPayload):
    ref: NonEmptyStr


class GitHubPullRequestPayload(GitHubEventPayload):
    pull_request: dict[str, Any]
    number: Number


class GitHubIssue(_ProviderModel):
    number: Number


class GitHubIssuesPayload(GitHubEventPayload):
    issue: GitHubIssue


GITHUB_EVENT_MODELS: dict[str, type[GitHubEventPayload]] = {
    "push": GitHubPushPayload,
    "pull_request": GitHubPullRequestPayload,
    "issues": GitHubIssuesPayload,
}


# --- Clerk ---

class ClerkEventPayload(_ProviderModel):
    """Clerk (Svix) event envelope."""
    object: Literal["event"]
    type: NonEmptyStr
    data: dict[str, Any]


# Provider-assigned delivery ids that stay stable across redeliveries
DELIVERY_ID_HEADERS: dict[WebhookSource, str] = {
    WebhookSource.GITHUB: "x-github-delivery",
    WebhookSource.CLERK: "svix-id",
}
