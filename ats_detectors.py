"""
ATS (Applicant Tracking System) detection from URLs.

Detection is deliberately conservative: a provider is only reported when
the host is one we know, and the canonical ATS URL is rebuilt from the
first path segment (or the origin, for Workday) instead of guessed.

Supported providers:
- Greenhouse
- Lever
- Ashby
- Workday (origin only)
"""

import logging
import re
from typing import NamedTuple, Optional
from urllib.parse import parse_qs, urlparse

logger = logging.getLogger(__name__)

# Hosts whose first path segment is the board slug
SLUG_HOSTS = {
    "boards.greenhouse.io": "greenhouse",
    "job-boards.greenhouse.io": "greenhouse",
    "jobs.lever.co": "lever",
    "jobs.ashbyhq.com": "ashby",
}

WORKDAY_HOST_SUFFIXES = ("myworkdayjobs.com", "workdayjobs.com")

# Greenhouse has shipped several board URL shapes over the years
GREENHOUSE_SLUG_PATTERNS = [
    re.compile(r"boards-api\.greenhouse\.io/v\d+/boards/([^/?#]+)", re.IGNORECASE),
    re.compile(r"(?<!job-)boards\.greenhouse\.io/([^/?#]+)", re.IGNORECASE),
    re.compile(r"job-boards\.greenhouse\.io/([^/?#]+)", re.IGNORECASE),
]

LEVER_SLUG_PATTERN = re.compile(r"jobs\.lever\.co/([^/?#]+)", re.IGNORECASE)
ASHBY_SLUG_PATTERN = re.compile(r"jobs\.ashbyhq\.com/([^/?#]+)", re.IGNORECASE)


class DetectedAts(NamedTuple):
    provider: str
    ats_url: str


def _parse(url: Optional[str]):
    if not url:
        return None
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return parsed


def detect_ats_from_url(url: Optional[str]) -> Optional[DetectedAts]:
    """
    Detect the ATS provider behind a job or careers URL.

    Args:
        url: Any URL, typically a job's apply link

    Returns:
        DetectedAts with the canonical board URL, or None
    """
    parsed = _parse(url)
    if parsed is None:
        return None

    host = parsed.hostname.lower() if parsed.hostname else ""
    segments = [s for s in parsed.path.split("/") if s]

    provider = SLUG_HOSTS.get(host)
    if provider:
        slug = segments[0] if segments else None
        if not slug or slug == "embed":
            slug = parse_qs(parsed.query).get("for", [None])[0]
        if not slug:
            return None
        # Greenhouse boards are canonicalized to the classic host
        canonical_host = "boards.greenhouse.io" if provider == "greenhouse" else host
        return DetectedAts(provider, f"https://{canonical_host}/{slug}")

    if any(host == s or host.endswith("." + s) for s in WORKDAY_HOST_SUFFIXES):
        return DetectedAts("workday", f"{parsed.scheme}://{parsed.netloc}")

    return None


def is_ats_host(url: Optional[str]) -> bool:
    parsed = _parse(url)
    if parsed is None:
        return False
    host = (parsed.hostname or "").lower()
    return (
        host in SLUG_HOSTS
        or host == "boards-api.greenhouse.io"
        or host == "api.lever.co"
        or any(host.endswith(s) for s in WORKDAY_HOST_SUFFIXES)
    )


def extract_greenhouse_slug(ats_url: str) -> Optional[str]:
    """
    Extract a Greenhouse board slug.

    An explicit ``?for=`` parameter wins over any path segment.
    """
    if not ats_url:
        return None
    query_slug = parse_qs(urlparse(ats_url).query).get("for", [None])[0]
    if query_slug:
        return query_slug
    for pattern in GREENHOUSE_SLUG_PATTERNS:
        match = pattern.search(ats_url)
        if match and match.group(1).lower() != "embed":
            return match.group(1)
    return None


def extract_lever_slug(ats_url: str) -> Optional[str]:
    match = LEVER_SLUG_PATTERN.search(ats_url or "")
    return match.group(1) if match else None


def extract_ashby_slug(ats_url: str) -> Optional[str]:
    match = ASHBY_SLUG_PATTERN.search(ats_url or "")
    return match.group(1) if match else None


def infer_website_from_url(url: Optional[str]) -> Optional[str]:
    """
    Infer a company website (``https://host``) from an apply URL.

    ATS-hosted URLs say nothing about the employer's own site and return None.
    """
    parsed = _parse(url)
    if parsed is None or is_ats_host(url):
        return None
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return f"https://{host}" if host else None
