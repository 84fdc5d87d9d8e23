"""
Webhook payload sanitization - produces the redacted copy that is safe to persist.

Two layers, applied in a single recursive walk:
- Global policy: any key containing one of GLOBAL_SENSITIVE_PATTERNS
  (case-insensitive substring; underscore patterns also match camelCase and
  kebab-case spellings) has its value replaced by REDACTED. The key stays.
- Provider rules: exact keys stripped for a source, plus surgical transforms for
  known structures (Stripe card/billing blocks keep brand, last4, expiry,
  country and postal code for support; GitHub people keep names but lose emails).

The input is never mutated: the walk builds a new structure.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from hookgate.schemas.webhook_payloads import WebhookSource

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

# Ordered policy table. Additions go at the end; see Settings.redaction_extra_patterns.
GLOBAL_SENSITIVE_PATTERNS: tuple[str, ...] = (
    # Authentication & secrets
    "password",
    "token",
    "secret",
    "api_key",
    "access_token",
    "refresh_token",
    "private_key",
    "ssh_key",
    "webhook_secret",
    "client_secret",
    # Payment information
    "cvv",
    "cvc",
    "card_number",
    "account_number",
    "routing_number",
    "bank_account",
    # Personal identification
    "ssn",
    "social_security_number",
    "passport",
    "drivers_license",
    "driver_license",
    "national_id",
)


def _pattern_variants(pattern: str) -> tuple[str, ...]:
    lowered = pattern.lower()
    if "_" not in lowered:
        return (lowered,)
    return (lowered, lowered.replace("_", ""), lowered.replace("_", "-"))


class KeyPolicy:
    """Case-insensitive substring matcher over an ordered list of key patterns."""

    def __init__(self, patterns: Iterable[str]):
        self.patterns = tuple(patterns)
        variants: list[str] = []
        for pattern in self.patterns:
            for variant in _pattern_variants(pattern):
                if variant not in variants:
                    variants.append(variant)
        self._variants = tuple(variants)

    def matches(self, key: str) -> bool:
        lowered = key.lower()
        return any(variant in lowered for variant in self._variants)

    def extended(self, extra: Optional[Iterable[str]]) -> "KeyPolicy":
        if not extra:
            return self
        return KeyPolicy(self.patterns + tuple(p for p in extra if p))


GLOBAL_POLICY = KeyPolicy(GLOBAL_SENSITIVE_PATTERNS)


# --- Surgical transforms -----------------------------------------------------

def redact_email(value: Any) -> Any:
    """Mask the local part of an email but keep the domain: "***@example.com"."""
    if isinstance(value, str) and "@" in value:
        return f"***@{value.rsplit('@', 1)[1]}"
    if value is None:
        return None
    return REDACTED


def _redact_fields(block: dict, fields: Iterable[str]) -> dict:
    redacted = dict(block)
    for name in fields:
        if redacted.get(name) is not None:
            redacted[name] = REDACTED
    return redacted


def _stripe_card(card: Any) -> Any:
    """Keep brand/last4/expiry/country; drop the full number and fingerprint."""
    if not isinstance(card, dict):
        return card
    return _redact_fields(card, ("number", "fingerprint"))


def _stripe_billing_details(billing: Any) -> Any:
    """Keep country and postal code; drop street lines, name, email and phone."""
    if not isinstance(billing, dict):
        return REDACTED if billing is not None else None
    redacted = _redact_fields(billing, ("name", "email", "phone"))
    address = redacted.get("address")
    if isinstance(address, dict):
        redacted["address"] = _redact_fields(address, ("line1", "line2"))
    elif address is not None:
        redacted["address"] = REDACTED
    return redacted


def _person_without_email(person: Any) -> Any:
    if not isinstance(person, dict):
        return person
    return _redact_fields(person, ("email",))


@dataclass(frozen=True)
class ProviderRules:
    # Exact keys (case-insensitive) whose whole value is replaced
    strip_keys: frozenset[str] = frozenset()
    # Exact keys whose value is rewritten before the walk continues into it
    transforms: dict[str, Callable[[Any], Any]] = field(default_factory=dict)
    # Transformed keys whose subtree is not subject to strip_keys
    preserved_keys: frozenset[str] = frozenset()


PROVIDER_RULES: dict[WebhookSource, ProviderRules] = {
    WebhookSource.STRIPE: ProviderRules(
        strip_keys=frozenset({
            "payment_method_details",
            "customer_details",
            "last4",
            "exp_month",
            "exp_year",
            "fingerprint",
            "sources",
            "default_source",
        }),
        transforms={
            "card": _stripe_card,
            "billing_details": _stripe_billing_details,
            "customer_email": redact_email,
            "receipt_email": redact_email,
        },
        preserved_keys=frozenset({"card", "billing_details"}),
    ),
    WebhookSource.GITHUB: ProviderRules(
        strip_keys=frozenset({
            "installation_access_token",
            "app_key",
            "credentials",
            "authorization",
        }),
        transforms={
            "author": _person_without_email,
            "committer": _person_without_email,
            "pusher": _person_without_email,
            "sender": _person_without_email,
        },
    ),
    WebhookSource.CLERK: ProviderRules(
        strip_keys=frozenset({
            "email_addresses",
            "phone_numbers",
            "external_accounts",
            "profile_image_url",
            "image_url",
            "unsafe_metadata",
            "private_metadata",
        }),
    ),
    WebhookSource.TEST: ProviderRules(),
}


def _walk(value: Any, policy: KeyPolicy, rules: ProviderRules, preserved: bool) -> Any:
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            name = str(key)
            lowered = name.lower()
            if policy.matches(name):
                result[key] = REDACTED
                continue
            transform = rules.transforms.get(lowered)
            if transform is not None:
                keep = preserved or lowered in rules.preserved_keys
                result[key] = _walk(transform(item), policy, rules, keep)
                continue
            if not preserved and lowered in rules.strip_keys:
                result[key] = REDACTED
                continue
            result[key] = _walk(item, policy, rules, preserved)
        return result
    if isinstance(value, (list, tuple)):
        return [_walk(item, policy, rules, preserved) for item in value]
    return value


def sanitize_payload(
    payload: Any,
    source: WebhookSource,
    extra_patterns: Optional[Iterable[str]] = None,
) -> Any:
    """
    Return a redacted deep copy of a parsed webhook payload.
    Scalars pass through unchanged; unexpected shapes are walked, never rejected.
    """
    policy = GLOBAL_POLICY.extended(extra_patterns)
    rules = PROVIDER_RULES.get(WebhookSource(source), ProviderRules())
    return _walk(payload, policy, rules, preserved=False)
