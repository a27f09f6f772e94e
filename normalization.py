"""
Location normalization for job data.

Turns free-text locations such as ``"San Francisco, CA, US"``,
``"London (Remote)"`` or ``"Berlin • Munich"`` into a
``NormalizedLocation``:
- kind (remote / hybrid / onsite / unknown) with boundary-aware tokens
- multi-location detection
- city / region / country for single locations only

Also hosts the HTML-to-text helper shared by the salary parser and the
AI enrichment prompt builder.
"""

import logging
import re
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup

from models import LocationKind, NormalizedLocation

logger = logging.getLogger(__name__)

# Separators preserved in the comparison form
SEPARATORS = ",;|/"
_B = r"(?:^|[ ,;|/])"
_E = r"(?=[ ,;|/]|$)"


def _tokens(*phrases: str) -> re.Pattern:
    return re.compile(_B + "(?:" + "|".join(phrases) + ")" + _E)


# Precedence is the list order
KIND_PATTERNS = [
    (LocationKind.HYBRID, _tokens(r"hybrid", r"remote and on ?site", r"on ?site and remote")),
    (LocationKind.ONSITE, _tokens(r"on ?site", r"in office", r"office based", r"in person", r"office")),
    (LocationKind.REMOTE, _tokens(r"remote", r"telecommute", r"work from home", r"wfh", r"anywhere", r"global")),
]

MULTI_LOCATION_PHRASES = re.compile(r"(multiple locations|various locations|any of)")
MULTI_LOCATION_SEPARATORS = re.compile(r"[;|/]")
# Three or more commas: four segments. "City, Region, Country" stays single.
MULTI_LOCATION_COMMAS = re.compile(r"([^,]+,){3,}[^,]+")

QUALIFIER_WORDS = r"remote|hybrid|onsite|on site|on-site|anywhere|global"
TRAILING_PAREN_QUALIFIER = re.compile(r"\s*\((?:" + QUALIFIER_WORDS + r")[^)]*\)\s*$", re.IGNORECASE)
TRAILING_SUFFIX_QUALIFIER = re.compile(r"(\s*[-|,]\s*(?:" + QUALIFIER_WORDS + r")\s*)$", re.IGNORECASE)
LEADING_PREFIX_QUALIFIER = re.compile(r"^\s*(?:" + QUALIFIER_WORDS + r")\s*[-|:,]\s*", re.IGNORECASE)
BARE_QUALIFIER = re.compile(r"^(?:" + QUALIFIER_WORDS + r"|worldwide)$", re.IGNORECASE)

COUNTRY_ALIASES = {
    "united states": ["us", "usa", "u s", "united states", "united states of america", "america"],
    "united kingdom": ["uk", "gb", "united kingdom", "great britain", "england", "scotland", "wales"],
    "canada": ["ca", "canada"],
    "germany": ["de", "germany", "deutschland"],
    "france": ["fr", "france"],
    "netherlands": ["nl", "netherlands", "the netherlands", "holland"],
    "spain": ["es", "spain"],
    "italy": ["it", "italy"],
    "australia": ["au", "australia"],
    "new zealand": ["nz", "new zealand"],
    "sweden": ["se", "sweden"],
    "norway": ["no", "norway"],
    "denmark": ["dk", "denmark"],
    "finland": ["fi", "finland"],
    "switzerland": ["ch", "switzerland"],
    "ireland": ["ie", "ireland"],
    "poland": ["pl", "poland"],
    "portugal": ["pt", "portugal"],
    "brazil": ["br", "brazil"],
    "mexico": ["mx", "mexico"],
    "india": ["in", "india"],
    "singapore": ["sg", "singapore"],
    "austria": ["at", "austria"],
    "belgium": ["be", "belgium"],
    "israel": ["il", "israel"],
    "japan": ["jp", "japan"],
}

COUNTRY_DISPLAY = {key: key.title() for key in COUNTRY_ALIASES}

_COUNTRY_LOOKUP = {
    alias: COUNTRY_DISPLAY[canonical]
    for canonical, aliases in COUNTRY_ALIASES.items()
    for alias in aliases
}

# Regional labels that look like countries but are not
NON_COUNTRY_LABELS = {
    "emea", "apac", "latam", "amer", "americas", "north america", "south america",
    "europe", "eu", "asia", "global", "worldwide", "anywhere", "remote",
}

REMOTE_REGION_PATTERNS = [
    ("global", _tokens(r"global", r"world", r"worldwide", r"anywhere")),
    ("emea", _tokens(r"emea", r"europe")),
    ("apac", _tokens(r"apac", r"asia")),
    ("latam", _tokens(r"latam")),
]
US_TOKENS = _tokens(r"us", r"usa", r"united states")
NON_US_SCOPE_TOKENS = _tokens(
    r"canada", r"uk", r"united kingdom", r"europe", r"emea", r"apac", r"latam", r"global", r"world", r"anywhere"
)
CANADA_TOKENS = _tokens(r"canada")

TAG_RE = re.compile(r"<\w+")
ESCAPED_TAG_RE = re.compile(r"&lt;/?\w+", re.IGNORECASE)


def html_to_text(html: Optional[str]) -> str:
    """
    Strip HTML (including entity-escaped HTML) down to plain text.

    Args:
        html: Raw or entity-escaped HTML

    Returns:
        Whitespace-collapsed text
    """
    if not html:
        return ""
    if not TAG_RE.search(html) and ESCAPED_TAG_RE.search(html):
        html = BeautifulSoup(html, "lxml").get_text()
    text = BeautifulSoup(html, "lxml").get_text(separator=" ", strip=True)
    return re.sub(r"\s+", " ", text).strip()


def normalize_location_raw(raw: Optional[str]) -> str:
    """
    Build the comparison form of a location string.

    Lower-cases, treats a bullet as a pipe, and replaces everything except
    letters, digits and ``, ; | /`` with single spaces.
    """
    s = (raw or "").lower().replace("•", "|")
    s = re.sub(r"[^a-z0-9,;|/]+", " ", s)
    return re.sub(r"\s+", " ", s).strip()


def has_multi_location_signals(lr: str) -> bool:
    """True when a comparison-form string lists more than one location."""
    if not lr:
        return False
    return bool(
        MULTI_LOCATION_PHRASES.search(lr)
        or MULTI_LOCATION_SEPARATORS.search(lr)
        or MULTI_LOCATION_COMMAS.search(lr)
    )


def classify_kind(lr: str) -> LocationKind:
    for kind, pattern in KIND_PATTERNS:
        if pattern.search(lr):
            return kind
    return LocationKind.UNKNOWN


def infer_remote_region(lr: str) -> Optional[str]:
    """Map scope tokens ("emea", "anywhere", "usa") to a remote region label."""
    if not lr:
        return None
    for region, pattern in REMOTE_REGION_PATTERNS:
        if pattern.search(lr):
            return region
    if US_TOKENS.search(lr) and not NON_US_SCOPE_TOKENS.search(lr):
        return "us-only"
    if CANADA_TOKENS.search(lr):
        return "canada"
    return None


def normalize_country(token: str, allow_codes: bool = True) -> Optional[str]:
    """
    Resolve a country name, alias or two-letter code.

    Two-letter tokens are only read as country codes when ``allow_codes``
    is set; in the "City, XX" shape they are states or provinces.
    """
    lower = re.sub(r"[.\s]+", " ", token.lower()).strip()
    if not lower or lower in NON_COUNTRY_LABELS:
        return None
    if "remote" in lower or any(label in lower for label in ("emea", "apac", "latam")):
        return None
    if len(lower.replace(" ", "")) <= 2 and not allow_codes:
        return None
    return _COUNTRY_LOOKUP.get(lower)


def coerce_remote_flag(explicit: Optional[bool], location: NormalizedLocation) -> Optional[bool]:
    """Combine a provider's explicit remote flag with the parsed location kind."""
    if location.kind in (LocationKind.REMOTE, LocationKind.HYBRID):
        return True
    if explicit is not None:
        return explicit
    if location.kind == LocationKind.ONSITE:
        return False
    return None


class LocationNormalizer:
    """Normalizes raw location strings."""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    def normalize(self, raw: Optional[str]) -> NormalizedLocation:
        """
        Normalize a raw location string.

        Args:
            raw: Free-text location from an ATS or board

        Returns:
            NormalizedLocation; fully null for empty input
        """
        if not raw:
            return NormalizedLocation()

        display = re.sub(r"\s+", " ", raw).replace("–", "-").replace("—", "-").strip()
        lr = normalize_location_raw(display)
        if not lr:
            return NormalizedLocation()

        kind = classify_kind(lr)
        is_multi = has_multi_location_signals(lr)
        is_remote = {
            LocationKind.REMOTE: True,
            LocationKind.HYBRID: True,
            LocationKind.ONSITE: False,
        }.get(kind)
        remote_region = infer_remote_region(lr) if is_remote else None

        if is_multi:
            return NormalizedLocation(
                kind=kind,
                is_remote=is_remote,
                normalized_text=display,
                is_multi_location=True,
                remote_region=remote_region,
            )

        stripped = self.strip_qualifiers(display)
        city, region, country = self.split_parts(stripped)

        return NormalizedLocation(
            kind=kind,
            is_remote=is_remote,
            normalized_text=stripped or None,
            city=city,
            region=region,
            country=country,
            remote_region=remote_region,
        )

    def strip_qualifiers(self, text: str) -> str:
        """Remove remote/hybrid/onsite qualifiers from the display string."""
        result = TRAILING_PAREN_QUALIFIER.sub("", text)
        result = TRAILING_SUFFIX_QUALIFIER.sub("", result)
        result = LEADING_PREFIX_QUALIFIER.sub("", result)
        return result.strip()

    def split_parts(self, text: str) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        """
        Assign comma segments to (city, region, country).

        The last segment is tested against the country table; a final
        segment that is not a country falls back to city/region.
        """
        if not text or BARE_QUALIFIER.match(text):
            return None, None, None

        parts: List[str] = [p.strip() for p in text.split(",") if p.strip()]
        if not parts:
            return None, None, None

        if len(parts) == 1:
            only = parts[0]
            country = normalize_country(only, allow_codes=True)
            if country:
                return None, None, country
            if len(only) <= 2:
                return None, only.upper(), None
            return only, None, None

        if len(parts) == 2:
            first, second = parts
            country = normalize_country(second, allow_codes=False)
            if country:
                return first, None, country
            return first, second, None

        # Three or more segments: find the country from the end
        for index in range(len(parts) - 1, 0, -1):
            country = normalize_country(parts[index], allow_codes=index == len(parts) - 1)
            if country:
                region = parts[1] if index >= 2 else None
                return parts[0], region, country
        return parts[0], parts[1], None


_default_normalizer = LocationNormalizer()


def normalize_location(raw: Optional[str]) -> NormalizedLocation:
    """Module-level shortcut for ``LocationNormalizer().normalize``."""
    return _default_normalizer.normalize(raw)
