"""Redact sensitive data from structured logs and audit payloads.

Never log JWTs, cookies, passwords or secrets. Email addresses and IP addresses are
masked and long strings are truncated so uploaded file names or user agents cannot
flood the log.
"""
import re
from typing import Any

# Keys (case-insensitive) that must be redacted in dicts
REDACT_KEYS = frozenset({
    "password", "token", "secret", "authorization", "cookie", "csrf_token",
    "access_token", "refresh_token", "jwt", "api_key",
})

MAX_LOG_STRING = 200
MAX_USER_AGENT = 100

_EMAIL_RE = re.compile(r"\b([\w.+-])[\w.+-]*@([\w-]+(?:\.[\w-]+)+)\b")
_IPV4_RE = re.compile(r"\b(\d{1,3})\.(\d{1,3})\.\d{1,3}\.\d{1,3}\b")


def _redact_key(key: str) -> bool:
    k = key.lower()
    return any(r in k for r in REDACT_KEYS)


def mask_email(email: str) -> str:
    """a.person@example.com -> a***@example.com"""
    local, sep, domain = email.partition("@")
    if not local or not sep or not domain:
        return "[invalid-email]"
    return f"{local[0]}***@{domain}"


def mask_ip(ip: str) -> str:
    """Keep the first two IPv4 octets or the first IPv6 group."""
    if ":" in ip:
        return ip.split(":")[0] + ":***"
    parts = ip.split(".")
    if len(parts) == 4:
        return f"{parts[0]}.{parts[1]}.***"
    return "***"


def truncate_user_agent(user_agent: str) -> str:
    return _EMAIL_RE.sub("[email]", user_agent[:MAX_USER_AGENT])


def _redact_string(s: str) -> str:
    if _looks_like_secret(s):
        return "[REDACTED]"
    s = _EMAIL_RE.sub(lambda m: f"{m.group(1)}***@{m.group(2)}", s)
    s = _IPV4_RE.sub(lambda m: f"{m.group(1)}.{m.group(2)}.***", s)
    if len(s) > MAX_LOG_STRING:
        s = s[:MAX_LOG_STRING] + "..."
    return s


def _redact_value(key: str, value: Any) -> Any:
    k = key.lower()
    if _redact_key(k):
        return "[REDACTED]"
    if isinstance(value, str):
        if k == "email":
            return mask_email(value)
        if k in ("ip", "client_ip", "remote_addr"):
            return mask_ip(value)
        if k == "user_agent":
            return truncate_user_agent(value)
    return redact_for_log(value)


def redact_for_log(obj: Any) -> Any:
    """Return a copy of obj safe for logging: sensitive keys replaced with '[REDACTED]'."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return {k: _redact_value(str(k), v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return type(obj)(redact_for_log(x) for x in obj)
    if isinstance(obj, str):
        return _redact_string(obj)
    return obj


def _looks_like_secret(s: str) -> bool:
    """Heuristic: long base64-like or bearer token."""
    if len(s) > 64 and re.match(r"^[A-Za-z0-9_-]+\.([A-Za-z0-9_-]+)\.", s):
        return True  # JWT-like
    if s.lower().startswith("bearer "):
        return True
    return False
