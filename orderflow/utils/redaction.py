"""Redaction helpers for safe logging of payment and customer data.

Payment-gateway secrets, webhook signatures and customer emails must not
reach log lines or error responses in clear text. Key matching is
case-insensitive substring matching; free-text scrubbing also catches
Stripe key literals wherever they appear.
"""

import re

# Substring patterns matched case-insensitively against dict keys
_DEFAULT_SENSITIVE_PATTERNS = frozenset({
    "secret", "token", "authorization", "api_key", "password",
    "signature", "client_secret",
})

# Keys whose entire value is redacted regardless of content type
_CONTAINER_KEYS = frozenset({"headers", "payment_method_details"})

_REDACTED = "***REDACTED***"


def mask_email(email: str | None) -> str:
    """Mask an email address for log output.

    ``jane.doe@example.com`` becomes ``j***@example.com``.

    Args:
        email: Address to mask. None or empty yields an empty string.

    Returns:
        Masked address, or ``***`` when the value has no domain part.
    """
    if not email:
        return ""
    local, sep, domain = email.strip().partition("@")
    if not sep or not local:
        return "***"
    return f"{local[0]}***@{domain}"


def _is_sensitive_key(key: str, sensitive_patterns: frozenset[str]) -> bool:
    key_lower = key.lower()
    return any(pattern in key_lower for pattern in sensitive_patterns)


def redact_for_logging(
    obj: dict,
    sensitive_patterns: frozenset[str] = _DEFAULT_SENSITIVE_PATTERNS,
) -> dict:
    """Redact sensitive values from a dict for safe logging.

    Email-valued keys are masked rather than removed so log lines remain
    useful for support.

    Args:
        obj: Dict to redact (not mutated, returns a copy).
        sensitive_patterns: Substring patterns whose matching keys' values
            should be replaced. Matching is case-insensitive.

    Returns:
        New dict with sensitive values replaced by '***REDACTED***'.
    """
    result = {}
    for key, value in obj.items():
        key_lower = key.lower()
        if key_lower in _CONTAINER_KEYS or _is_sensitive_key(key, sensitive_patterns):
            result[key] = _REDACTED
        elif "email" in key_lower and isinstance(value, str):
            result[key] = mask_email(value)
        elif isinstance(value, dict):
            result[key] = redact_for_logging(value, sensitive_patterns)
        elif isinstance(value, list):
            result[key] = [
                redact_for_logging(item, sensitive_patterns) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            result[key] = value
    return result


_SENSITIVE_KEYWORDS = r"secret|token|password|api_key|signature|authorization"
_SENSITIVE_VALUE_PATTERNS = re.compile(
    r"(?i)"
    r"(?:"
    # Authorization: Bearer <token>
    r"Authorization\s*:\s*Bearer\s+\S+"
    r"|"
    # Stripe key and webhook-secret literals
    r"\b(?:sk|rk)_(?:live|test)_[A-Za-z0-9]+"
    r"|"
    r"\bwhsec_[A-Za-z0-9]+"
    r"|"
    # key=value or key: value
    r"(?:" + _SENSITIVE_KEYWORDS + r")\s*[=:]\s*\S+"
    r")",
)


def sanitize_error_message(msg: str | None, max_length: int = 500) -> str | None:
    """Scrub secrets from an exception message before logging or returning it.

    Args:
        msg: Error message to sanitize (None passes through).
        max_length: Maximum length of the sanitized message.

    Returns:
        Sanitized and truncated message, or None.
    """
    if msg is None:
        return None
    sanitized = _SENSITIVE_VALUE_PATTERNS.sub(_REDACTED, msg)
    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length - 3] + "..."
    return sanitized
