"""
Company name sanitization and canonical company resolution.

Board scrapers hand us whatever sat in the "company" slot: job titles,
salary strings, work-arrangement words, the board's own brand. The
sanitizers below reject those before a Company row is ever created, and
``CompanyResolver`` maps a surviving name onto exactly one canonical
company with a unique slug.
"""

import logging
import re
from typing import Any, Dict, Optional

from ats_detectors import detect_ats_from_url, infer_website_from_url
from db_models import COMPANY_FILLABLE_FIELDS, Company
from repositories import CompanyRepository

logger = logging.getLogger(__name__)

BANNED_COMPANY_NAMES = {
    "remote", "anywhere", "worldwide", "global",
    "full time", "full-time", "part time", "part-time",
    "contract", "internship", "temporary",
    "marketing", "ai",
}

BOARD_BRAND_NAMES = (
    "remoteok", "remote ok", "remotive",
    "remote rocketship", "remote-rocketship",
    "remote 100k", "remote100k",
    "remoteai", "remote ai",
)

WORK_ARRANGEMENT_SUFFIX = re.compile(
    r"^(.+?)[\s\-–|]+(remote|hybrid|full time|full-time|part time|part-time|"
    r"contract|internship|temporary|onsite|on site)$",
    re.IGNORECASE,
)
TRAILING_PARENTHETICAL = re.compile(r"\s*\([^)]*\)\s*$")

SALARY_SIGNAL = re.compile(r"[$€£₹]|\b\d+\s*[kK]\b|\d\s*[-–]\s*\d|\b(?:USD|EUR|GBP|CAD|AUD)\b")
SALARY_RESIDUE = re.compile(r"\b(?:USD|EUR|GBP|CAD|AUD|NZD|SGD|CHF|INR)\b|\d+\s*[kKmM]\b", re.IGNORECASE)

JOB_TITLE_WORDS = re.compile(
    r"\b(engineer|developer|designer|manager|scientist|director|lead|principal|"
    r"staff|intern|customer success|marketing|sales|product manager)\b",
    re.IGNORECASE,
)
ORG_SUFFIX = re.compile(r"\b(inc|ltd|llc|corp|gmbh|labs|systems|technologies|group|company)\.?$", re.IGNORECASE)

MAX_NAME_LENGTH = 80


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _looks_like_salary(name: str) -> bool:
    """True for strings such as "$240k – $290k USD" that carry no name at all."""
    if not SALARY_SIGNAL.search(name):
        return False
    residue = SALARY_RESIDUE.sub(" ", name)
    return not re.search(r"[A-Za-z]", residue)


def clean_company_name(raw: Optional[str]) -> Optional[str]:
    """
    First-pass cleanup of a scraped company name.

    Args:
        raw: Name exactly as scraped

    Returns:
        Cleaned name, or None when the value is not a company
    """
    if not raw:
        return None
    name = _collapse(raw)
    if not name or name.lower() in BANNED_COMPANY_NAMES:
        return None
    if _looks_like_salary(name):
        return None

    match = WORK_ARRANGEMENT_SUFFIX.match(name)
    if match:
        name = match.group(1).strip()
    name = TRAILING_PARENTHETICAL.sub("", name).strip()

    if name.lower() in BANNED_COMPANY_NAMES:
        return None
    if len(name) < 2 or not re.search(r"[A-Za-z]", name):
        return None
    if len(name) > MAX_NAME_LENGTH:
        name = name.split(" - ")[0].strip()
        if not _is_plausible_name(name):
            return None
    return name or None


def _is_plausible_name(name: str) -> bool:
    return 2 <= len(name) <= MAX_NAME_LENGTH and bool(re.search(r"[A-Za-z]", name))


def sanitize_board_company_name(name: Optional[str]) -> Optional[str]:
    """
    Board-specific rejection of names that are really titles or brands.

    "Senior Engineer at Acme" keeps "Acme"; a bare job title without an
    organization suffix ("Inc", "Labs", ...) is dropped.
    """
    if not name:
        return None
    name = _collapse(name)
    lower = name.lower()

    if any(lower == brand or lower.startswith(brand + " ") for brand in BOARD_BRAND_NAMES):
        return None

    at_match = re.search(r"\s+at\s+(.+)$", name, re.IGNORECASE)
    if at_match:
        candidate = at_match.group(1).strip()
        if 0 < len(candidate) <= MAX_NAME_LENGTH:
            name = candidate

    if JOB_TITLE_WORDS.search(name) and not ORG_SUFFIX.search(name):
        return None
    return name


def sanitize_company_name(raw: Optional[str]) -> Optional[str]:
    """Full sanitization: cleanup, then board rejection rules."""
    return sanitize_board_company_name(clean_company_name(raw))


def slugify(name: str) -> str:
    slug = name.lower().replace("&", " and ")
    slug = re.sub(r"[^a-z0-9]+", "-", slug).strip("-")
    return slug or "company"


class CompanyResolver:
    """Maps raw company names onto canonical Company rows."""

    def __init__(self, repo: CompanyRepository):
        self.repo = repo
        self.logger = logging.getLogger(self.__class__.__name__)

    def ensure_unique_slug(self, name: str) -> str:
        """
        Pick a slug no other company uses.

        ``acme`` is tried first, then ``acme-2``, ``acme-3`` and so on.
        """
        base = slugify(name)
        slug = base
        counter = 2
        while self.repo.slug_exists(slug):
            slug = f"{base}-{counter}"
            counter += 1
        return slug

    def resolve(
        self,
        raw_name: Optional[str],
        source: str = "",
        website_url: Optional[str] = None,
        apply_url: Optional[str] = None,
        ats_url: Optional[str] = None,
        ats_provider: Optional[str] = None,
        linkedin_url: Optional[str] = None,
    ) -> Optional[Company]:
        """
        Find or create the canonical company for a scraped name.

        Existing companies only get null fields filled in; stored values
        are never overwritten.

        Args:
            raw_name: Company name as scraped
            source: Source id, for logging
            website_url: Known company website
            apply_url: Job apply link, used for ATS and website inference
            ats_url: Explicit ATS board URL
            ats_provider: Explicit ATS provider
            linkedin_url: Company LinkedIn page

        Returns:
            Company, or None when the name was rejected
        """
        name = sanitize_company_name(raw_name)
        if not name:
            self.logger.info(
                "Rejected company name",
                extra={"raw_name": raw_name, "source": source},
            )
            return None

        detected = None
        if ats_url:
            detected = detect_ats_from_url(ats_url)
        if detected is None and apply_url:
            detected = detect_ats_from_url(apply_url)

        candidate: Dict[str, Any] = {
            "ats_provider": ats_provider or (detected.provider if detected else None),
            "ats_url": (detected.ats_url if detected else None) or ats_url,
            "website": website_url or infer_website_from_url(apply_url),
            "linkedin_url": linkedin_url,
        }

        existing = self.repo.find_by_name(name)
        if existing is None and candidate["ats_url"]:
            existing = self.repo.find_by_ats_url(candidate["ats_url"])

        if existing is not None:
            missing = {
                field: candidate[field]
                for field in COMPANY_FILLABLE_FIELDS
                if candidate.get(field) and getattr(existing, field) is None
            }
            if missing:
                self.logger.debug("Filling company fields", extra={"company": existing.slug, "fields": sorted(missing)})
                return self.repo.update(existing.id, missing)
            return existing

        company = Company(
            name=name,
            slug=self.ensure_unique_slug(name),
            **{k: v for k, v in candidate.items() if v},
        )
        self.logger.info("Created company", extra={"company": company.slug, "source": source})
        return self.repo.create(company)
