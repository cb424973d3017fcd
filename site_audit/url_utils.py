# File: site_audit/url_utils.py
"""site_audit.url_utils: нормализация и проверка URL перед постановкой в очередь аудита.

Проверка выполняется только по буквальному имени хоста или IP-адресу:
DNS-разрешение не производится.
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence
from urllib.parse import urlsplit

from site_audit.logger import logger

__all__: Sequence[str] = (
    "BLOCKED_HOSTNAMES",
    "InvalidInput",
    "ParsedUrls",
    "RejectReason",
    "ValidationOutcome",
    "normalize_url",
    "parse_url_list",
    "validate_url",
)

BLOCKED_HOSTNAMES = frozenset(
    {
        "localhost",
        "127.0.0.1",
        "0.0.0.0",
        "::1",
        "[::1]",
        "metadata.google.internal",
        "169.254.169.254",
    }
)

_PRIVATE_IPV4_PATTERNS = tuple(
    re.compile(p)
    for p in (
        r"^10\.",
        r"^172\.(1[6-9]|2[0-9]|3[01])\.",
        r"^192\.168\.",
        r"^127\.",
        r"^0\.",
        r"^169\.254\.",
    )
)
_PRIVATE_IPV6_NETWORKS = (
    ipaddress.IPv6Network("fc00::/7"),
    ipaddress.IPv6Network("fe80::/10"),
)

_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
_HOST_RE = re.compile(r"^[a-z0-9_.-]+$")
_DEFAULT_PORTS = {"http": 80, "https": 443}
_SPLIT_RE = re.compile(r"[\n,]")


class RejectReason(str, Enum):
    """Причина отклонения URL; значение — машинный код, ``message`` — текст для пользователя."""

    MALFORMED = "malformed"
    DISALLOWED_SCHEME = "disallowed-scheme"
    BLOCKED_HOST = "blocked-host"
    PRIVATE_IP = "private-ip"
    MISSING_DOMAIN = "missing-domain"

    @property
    def message(self) -> str:
        return _REASON_MESSAGES[self]


_REASON_MESSAGES = {
    RejectReason.MALFORMED: "Invalid URL format",
    RejectReason.DISALLOWED_SCHEME: "Only HTTP and HTTPS URLs are allowed",
    RejectReason.BLOCKED_HOST: "Internal/localhost URLs are not allowed",
    RejectReason.PRIVATE_IP: "Private IP addresses are not allowed",
    RejectReason.MISSING_DOMAIN: "URL must have a valid domain",
}


@dataclass(frozen=True, slots=True)
class ValidationOutcome:
    """Результат проверки: либо принятый нормализованный URL, либо причина отказа."""

    url: Optional[str] = None
    reason: Optional[RejectReason] = None

    @property
    def valid(self) -> bool:
        return self.reason is None and bool(self.url)

    @classmethod
    def accepted(cls, url: str) -> ValidationOutcome:
        return cls(url=url)

    @classmethod
    def rejected(cls, reason: RejectReason) -> ValidationOutcome:
        return cls(reason=reason)


@dataclass(frozen=True, slots=True)
class InvalidInput:
    """Отклонённая строка ввода в исходном виде."""

    input: str
    reason: RejectReason

    @property
    def error(self) -> str:
        return self.reason.message

    def to_dict(self) -> dict:
        return {"input": self.input, "reason": self.reason.value, "error": self.error}


@dataclass(slots=True)
class ParsedUrls:
    valid: List[str] = field(default_factory=list)
    invalid: List[InvalidInput] = field(default_factory=list)


def _canonical_host(host: str) -> Optional[str]:
    """Приводит хост к нижнему регистру и punycode; None, если хост недопустим."""
    if host.startswith("["):
        if not host.endswith("]"):
            return None
        try:
            addr = ipaddress.IPv6Address(host[1:-1])
        except ValueError:
            return None
        return f"[{addr.compressed}]"

    host = host.lower()
    if not host.isascii():
        try:
            host = host.encode("idna").decode("ascii")
        except UnicodeError:
            return None
    if not host or not _HOST_RE.match(host):
        return None
    return host


def normalize_url(raw: str) -> str:
    """Нормализует URL: схема по умолчанию https, схема и хост в нижнем регистре,
    завершающий слеш корневого пути удаляется. Пустая строка означает ошибку разбора.
    """
    url = (raw or "").strip()
    if not url:
        return ""
    if not _SCHEME_RE.match(url):
        url = "https://" + url
    if any(ch.isspace() for ch in url):
        return ""

    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return ""

    scheme = parts.scheme.lower()
    netloc = parts.netloc
    userinfo, _, hostport = netloc.rpartition("@")
    if hostport.startswith("["):
        host = hostport[: hostport.find("]") + 1]
    else:
        host = hostport.split(":", 1)[0]

    host = _canonical_host(host)
    if host is None:
        return ""

    authority = host
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        authority = f"{host}:{port}"
    if userinfo:
        authority = f"{userinfo}@{authority}"

    path = parts.path or "/"
    result = f"{scheme}://{authority}{path}"
    if parts.query:
        result += f"?{parts.query}"
    if parts.fragment:
        result += f"#{parts.fragment}"

    if path == "/" and result.endswith("/"):
        result = result[:-1]
    return result


def _is_private_host(host: str) -> bool:
    if any(p.match(host) for p in _PRIVATE_IPV4_PATTERNS):
        return True
    try:
        addr = ipaddress.IPv6Address(host.strip("[]"))
    except ValueError:
        return False
    return any(addr in net for net in _PRIVATE_IPV6_NETWORKS)


def validate_url(raw: str) -> ValidationOutcome:
    """Проверяет URL для аудита: схема, запрещённые хосты, приватные сети, наличие домена."""
    normalized = normalize_url(raw)
    if not normalized:
        return ValidationOutcome.rejected(RejectReason.MALFORMED)

    try:
        parts = urlsplit(normalized)
        hostname = parts.hostname or ""
    except ValueError:
        return ValidationOutcome.rejected(RejectReason.MALFORMED)

    if parts.scheme not in ("http", "https"):
        return ValidationOutcome.rejected(RejectReason.DISALLOWED_SCHEME)

    # absolute FQDN form: "localhost." resolves like "localhost"
    if hostname.endswith("."):
        hostname = hostname[:-1]

    if hostname in BLOCKED_HOSTNAMES or f"[{hostname}]" in BLOCKED_HOSTNAMES:
        return ValidationOutcome.rejected(RejectReason.BLOCKED_HOST)

    if _is_private_host(hostname):
        return ValidationOutcome.rejected(RejectReason.PRIVATE_IP)

    if "." not in hostname:
        return ValidationOutcome.rejected(RejectReason.MISSING_DOMAIN)

    return ValidationOutcome.accepted(normalized)


def parse_url_list(text: str) -> ParsedUrls:
    """Разбирает ввод (строки или запятые) в уникальные корректные URL и список отказов."""
    lines = [line.strip() for line in _SPLIT_RE.split(text or "")]
    parsed = ParsedUrls()
    seen: set[str] = set()

    for line in lines:
        if not line:
            continue
        outcome = validate_url(line)
        if outcome.valid and outcome.url:
            if outcome.url not in seen:
                seen.add(outcome.url)
                parsed.valid.append(outcome.url)
            continue
        reason = outcome.reason or RejectReason.MALFORMED
        logger.debug("Rejected URL %r: %s", line, reason.value)
        parsed.invalid.append(InvalidInput(input=line, reason=reason))

    duplicates = sum(1 for line in lines if line) - len(parsed.valid) - len(parsed.invalid)
    if duplicates:
        logger.debug("Removed %d duplicate URLs", duplicates)
    return parsed
