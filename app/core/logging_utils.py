import re
from typing import Any, Dict

MASK = "***MASKED***"

# Field names whose values are credentials
SENSITIVE_FIELD_TERMS = (
    "api_key", "apikey", "x-api-key", "api-key",
    "token", "jwt", "authorization", "bearer",
    "password", "secret", "private_key",
)
# Identifiers and digests are safe to log even when their name mentions a credential
SAFE_FIELD_SUFFIXES = ("id", "_id", "hash", "_hash", "prefix", "category", "type")

# prefix_environment_v{version}_{timestamp}_{random}_{checksum}
API_KEY_PATTERN = re.compile(r"\b[A-Za-z0-9-]+_[A-Za-z0-9-]+_v\d+_\d+_[A-Z2-7]{32}_[A-Z2-7]{7}\b")
JWT_PATTERN = re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+")


def _is_sensitive_field(name: str) -> bool:
    name = name.lower()
    if name in ("requestid", "request_id"):
        return False
    if name.endswith(SAFE_FIELD_SUFFIXES):
        return False
    return any(term in name for term in SENSITIVE_FIELD_TERMS)


def mask_text(text: str, mask_string: str = MASK) -> str:
    """Replace API key text and JWTs embedded anywhere in a string."""
    text = API_KEY_PATTERN.sub(mask_string, text)
    return JWT_PATTERN.sub(mask_string, text)


def mask_sensitive_data(data: Any, mask_string: str = MASK) -> Any:
    """
    Recursively mask credentials in dictionaries, lists, and strings.

    Args:
        data: Data structure to mask (dict, list, str, or other)
        mask_string: String to use for masking

    Returns:
        Masked data structure
    """
    if isinstance(data, dict):
        masked = {}
        for key, value in data.items():
            if _is_sensitive_field(str(key)):
                masked[key] = mask_string
            elif str(key).lower() == "email" and isinstance(value, str) and "@" in value:
                local, _, domain = value.partition("@")
                masked[key] = (local[:3] + "***@" + domain) if len(local) > 3 else mask_string
            else:
                masked[key] = mask_sensitive_data(value, mask_string)
        return masked

    if isinstance(data, (list, tuple)):
        return [mask_sensitive_data(item, mask_string) for item in data]

    if isinstance(data, str):
        return mask_text(data, mask_string)

    return data


def mask_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Mask credential-bearing HTTP headers."""
    sensitive_headers = ("authorization", "x-api-key", "api-key", "x-auth-token", "cookie", "set-cookie")
    return {
        key: (MASK if any(s in key.lower() for s in sensitive_headers) else value)
        for key, value in headers.items()
    }


def sanitize_log_message(message: str, **kwargs: Any) -> str:
    """
    Build "message | Key: value | ..." with credentials masked.

    A RequestID keyword is appended last so RequestIDFormatter can lift it
    into the record prefix.
    """
    request_id = kwargs.pop('RequestID', None) or kwargs.pop('request_id', None)

    formatted_message = mask_text(message)
    if kwargs:
        context_parts = []
        for key, value in mask_sensitive_data(kwargs).items():
            if isinstance(value, (dict, list)):
                value = str(value)[:200]
            context_parts.append(f"{key}: {value}")
        formatted_message = f"{formatted_message} | {' | '.join(context_parts)}"

    if request_id:
        formatted_message = f"{formatted_message} | RequestID: {request_id}"

    return formatted_message
