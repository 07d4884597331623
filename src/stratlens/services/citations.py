"""
Citation normalization.

Historical artifacts and generator output reference evidence in many shapes:
bare URL strings, objects with assorted key spellings, arrays of either, or
wrapper objects holding a citations/sources/references list. Everything funnels
into `Citation`. Entries that cannot be interpreted are dropped, never raised.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Iterable, Optional
from urllib.parse import urlsplit, urlunsplit

from stratlens.models.citations import EVIDENCE_TYPES, Citation

URL_KEYS = ("url", "href", "link", "citation", "source_url")
TITLE_KEYS = ("title", "pageTitle", "page_title", "name")
TYPE_KEYS = ("type", "evidence_type", "evidenceType", "source_type", "sourceType")
RETRIEVED_KEYS = ("retrievedAt", "retrieved_at", "extractedAt", "extracted_at", "date", "created_at", "createdAt")
PUBLISHED_KEYS = ("publishedAt", "published_at", "publishedDate", "published_date", "publishDate", "source_date")
CONFIDENCE_KEYS = ("confidence", "confidence_score", "score", "source_confidence")
WRAPPER_KEYS = ("citations", "evidence_citations", "sources", "references")

MAX_UNWRAP_DEPTH = 6

_EXACT_TYPES = {
    "pricing": "pricing",
    "pricing_page": "pricing",
    "price": "pricing",
    "docs": "docs",
    "doc": "docs",
    "documentation": "docs",
    "review": "reviews",
    "reviews": "reviews",
    "job": "jobs",
    "jobs": "jobs",
    "careers": "jobs",
    "changelog": "changelog",
    "changelogs": "changelog",
    "release_notes": "changelog",
    "blog": "blog",
    "marketing_site": "blog",
    "marketing": "blog",
    "social": "blog",
    "community": "community",
    "forum": "community",
    "security": "security",
    "trust": "security",
    "status": "other",
    "other": "other",
}

# Checked in order; first hit wins
_SUBSTRING_TYPES = (
    ("pric", "pricing"),
    ("doc", "docs"),
    ("review", "reviews"),
    ("job", "jobs"),
    ("career", "jobs"),
    ("hiring", "jobs"),
    ("changelog", "changelog"),
    ("release", "changelog"),
    ("blog", "blog"),
    ("news", "blog"),
    ("market", "blog"),
    ("social", "blog"),
    ("communit", "community"),
    ("forum", "community"),
    ("secur", "security"),
    ("complian", "security"),
)

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)
_NON_WEB_PREFIXES = ("mailto:", "javascript:", "data:", "tel:", "file:", "ftp:")


def canonicalize_url(raw: Any) -> Optional[str]:
    """
    Canonical http(s) URL or None.

    - fragment stripped
    - scheme assumed https when missing (including protocol-relative //host)
    - scheme and host lowercased
    """
    if not isinstance(raw, str):
        return None
    value = raw.strip()
    if not value or any(ch.isspace() for ch in value):
        return None
    lowered = value.lower()
    if lowered.startswith(_NON_WEB_PREFIXES):
        return None
    if value.startswith("//"):
        value = "https:" + value
    elif not _SCHEME_RE.match(value):
        value = "https://" + value

    try:
        parts = urlsplit(value)
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if scheme not in ("http", "https"):
        return None
    host = (parts.hostname or "").lower()
    if not host or ("." not in host and host != "localhost"):
        return None

    try:
        port = parts.port
    except ValueError:
        return None
    netloc = f"{host}:{port}" if port else host
    return urlunsplit((scheme, netloc, parts.path, parts.query, ""))


def normalize_evidence_type(raw: Any) -> Optional[str]:
    """Map a free-form type label onto the closed evidence type set."""
    if not isinstance(raw, str):
        return None
    key = raw.strip().lower().replace("-", "_").replace(" ", "_")
    if not key:
        return None
    if key in EVIDENCE_TYPES:
        return key
    if key in _EXACT_TYPES:
        return _EXACT_TYPES[key]
    for needle, mapped in _SUBSTRING_TYPES:
        if needle in key:
            return mapped
    return None


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """Parse date-like values into an aware UTC datetime; None when unparseable."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, datetime):
        dt = raw
    elif isinstance(raw, date):
        dt = datetime(raw.year, raw.month, raw.day)
    elif isinstance(raw, (int, float)):
        if not math.isfinite(raw) or raw <= 0:
            return None
        seconds = raw / 1000.0 if raw > 1e12 else float(raw)
        try:
            dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(raw, str):
        dt = _parse_date_string(raw.strip())
        if dt is None:
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_date_string(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        pass
    if re.fullmatch(r"\d{14}", value):
        try:
            return datetime.strptime(value, "%Y%m%d%H%M%S")
        except ValueError:
            return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def clamp_confidence(raw: Any) -> Optional[float]:
    """Clamp to [0, 1]; values in (1, 100] are read as percentages."""
    if isinstance(raw, bool) or raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    if 1.0 < value <= 100.0:
        value = value / 100.0
    return min(1.0, max(0.0, value))


def _first(data: dict, keys: Iterable[str]) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def _iter_candidates(value: Any, depth: int = 0) -> Iterable[Any]:
    if depth > MAX_UNWRAP_DEPTH or value is None:
        return
    if isinstance(value, Citation):
        yield value.model_dump()
    elif isinstance(value, (str, dict)) and not _is_wrapper(value):
        yield value
    elif isinstance(value, dict):
        for key in WRAPPER_KEYS:
            if key in value:
                yield from _iter_candidates(value[key], depth + 1)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _iter_candidates(item, depth + 1)


def _is_wrapper(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    if _first(value, URL_KEYS) is not None:
        return False
    return any(isinstance(value.get(k), (list, tuple, dict)) for k in WRAPPER_KEYS)


def _citation_from(candidate: Any) -> Optional[Citation]:
    if isinstance(candidate, str):
        url = canonicalize_url(candidate)
        return Citation(url=url) if url else None

    if not isinstance(candidate, dict):
        return None
    url = canonicalize_url(_first(candidate, URL_KEYS))
    if url is None:
        return None

    title = _first(candidate, TITLE_KEYS)
    return Citation(
        url=url,
        title=title.strip() if isinstance(title, str) and title.strip() else None,
        evidence_type=normalize_evidence_type(_first(candidate, TYPE_KEYS)),
        retrieved_at=to_iso(parse_timestamp(_first(candidate, RETRIEVED_KEYS))),
        published_at=to_iso(parse_timestamp(_first(candidate, PUBLISHED_KEYS))),
        confidence=clamp_confidence(_first(candidate, CONFIDENCE_KEYS)),
    )


def normalize_citations(value: Any) -> list[Citation]:
    """
    Normalize any supported citation shape into canonical citations,
    de-duplicated by canonical URL (first occurrence wins).
    """
    seen: set[str] = set()
    out: list[Citation] = []
    for candidate in _iter_candidates(value):
        citation = _citation_from(candidate)
        if citation is None or citation.url in seen:
            continue
        seen.add(citation.url)
        out.append(citation)
    return out
