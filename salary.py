"""
Salary normalization.

Turns salary text ("$120,000 - $150,000", "€65k-80k per year",
"£450/day") or structured min/max figures into a
``SalaryNormalizationResult``: currency, interval, annualized values in
local currency, a source-based confidence, and exactly one
``SalaryParseReason``.

Values are never silently clamped. Anything implausible is nulled and the
reason recorded so audits can find it.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

from bs4 import BeautifulSoup

from models import SalaryInterval, SalaryNormalizationResult, SalaryParseReason, SalarySource
from normalization import ESCAPED_TAG_RE, TAG_RE, html_to_text

logger = logging.getLogger(__name__)

# Explicit ISO codes win over symbols
CURRENCY_CODE_PATTERNS = [
    (re.compile(r"\bINR\b|\blakhs?\b|\blpa\b", re.IGNORECASE), "INR"),
    (re.compile(r"\bAUD\b", re.IGNORECASE), "AUD"),
    (re.compile(r"\bCAD\b", re.IGNORECASE), "CAD"),
    (re.compile(r"\bNZD\b", re.IGNORECASE), "NZD"),
    (re.compile(r"\bSGD\b", re.IGNORECASE), "SGD"),
    (re.compile(r"\bCHF\b", re.IGNORECASE), "CHF"),
    (re.compile(r"\bSEK\b", re.IGNORECASE), "SEK"),
    (re.compile(r"\bNOK\b", re.IGNORECASE), "NOK"),
    (re.compile(r"\bDKK\b", re.IGNORECASE), "DKK"),
    (re.compile(r"\bEUR\b", re.IGNORECASE), "EUR"),
    (re.compile(r"\bGBP\b", re.IGNORECASE), "GBP"),
    (re.compile(r"\bUSD\b", re.IGNORECASE), "USD"),
]

# Prefixed dollars must be tried before the bare "$"
CURRENCY_SYMBOL_PATTERNS = [
    (re.compile(r"₹"), "INR"),
    (re.compile(r"(?<![A-Za-z])(?:AU|A)\$"), "AUD"),
    (re.compile(r"(?<![A-Za-z])(?:CA|C)\$"), "CAD"),
    (re.compile(r"(?<![A-Za-z])NZ\$"), "NZD"),
    (re.compile(r"(?<![A-Za-z])(?:SG|S)\$"), "SGD"),
    (re.compile(r"(?<![A-Za-z])Fr\.\s*\d"), "CHF"),
    (re.compile(r"€"), "EUR"),
    (re.compile(r"£"), "GBP"),
    (re.compile(r"(?<![A-Za-z])US\$"), "USD"),
]
BARE_DOLLAR = re.compile(r"\$")

# "kr" alone could be SEK, NOK or DKK
KRONA_WITHOUT_CODE = re.compile(r"\d\s*kr\b|\bkr\.?\s*\d", re.IGNORECASE)

DOLLAR_BY_COUNTRY = {
    "CA": "CAD", "CANADA": "CAD",
    "AU": "AUD", "AUSTRALIA": "AUD",
    "NZ": "NZD", "NEW ZEALAND": "NZD",
    "SG": "SGD", "SINGAPORE": "SGD",
}

CURRENCY_ALIASES = {
    "US$": "USD", "$": "USD", "€": "EUR", "£": "GBP", "A$": "AUD", "AU$": "AUD",
    "C$": "CAD", "CA$": "CAD", "NZ$": "NZD", "S$": "SGD", "SG$": "SGD", "₹": "INR",
    "RS": "INR", "FR": "CHF",
}

INTERVAL_PATTERNS = [
    (SalaryInterval.HOUR, re.compile(r"per\s*hour|/\s*h(?:ou)?r\b|hourly|\bph\b")),
    (SalaryInterval.DAY, re.compile(r"per\s*day|/\s*day\b|daily|day rate")),
    (SalaryInterval.WEEK, re.compile(r"per\s*week|/\s*w(?:ee)?k\b|weekly|\bpw\b")),
    (SalaryInterval.MONTH, re.compile(r"per\s*month|/\s*mo(?:nth)?\b|monthly|\bpm\b")),
    (SalaryInterval.YEAR, re.compile(r"per\s*(?:year|annum)|/\s*y(?:ea)?r\b|annual|yearly|\bpa\b|\blpa\b")),
]

MONEY_TOKEN = re.compile(
    r"(?:US\$|A\$|C\$|NZ\$|S\$|CHF|SEK|NOK|DKK|USD|EUR|GBP|AUD|CAD|SGD|INR|₹|€|£|\$)\s*\d[\d,.\s]*[kKmM]?"
    r"|\d[\d,.\s]*[kKmM]?\s*(?:USD|EUR|GBP|AUD|CAD|SGD|INR|CHF|SEK|NOK|DKK)\b"
)
INTERVAL_WINDOW = 30

NUMBER_LITERAL = re.compile(r"(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)\s*([kKmM])?\b")
LAKH_LITERAL = re.compile(r"(\d+(?:\.\d+)?)\s*(?:lakhs?|lpa|l)\b", re.IGNORECASE)
RETIREMENT_PLAN = re.compile(r"\b401\s*\(?k\)?", re.IGNORECASE)

MIN_PLAUSIBLE_VALUE = 1_000
# Hourly and day rates, only when a currency is present
MIN_MARKED_VALUE = 10
MAX_PLAUSIBLE_VALUE = 50_000_000

INTERVAL_FACTORS = {
    SalaryInterval.HOUR: 2080,
    SalaryInterval.DAY: 260,
    SalaryInterval.WEEK: 52,
    SalaryInterval.MONTH: 12,
    SalaryInterval.YEAR: 1,
}

# Maximum plausible annual salary in local currency
DEFAULT_ANNUAL_CAP = 1_500_000
ANNUAL_CAPS = {
    "SEK": 20_000_000,
    "NOK": 20_000_000,
    "DKK": 20_000_000,
    "INR": 125_000_000,
}

# Annual local-currency amount that counts as a high salary
HIGH_SALARY_THRESHOLDS = {
    "USD": 100_000,
    "EUR": 80_000,
    "GBP": 70_000,
    "CAD": 120_000,
    "AUD": 140_000,
    "NZD": 150_000,
    "SGD": 120_000,
    "CHF": 110_000,
    "SEK": 1_000_000,
    "NOK": 1_000_000,
    "DKK": 700_000,
    "INR": 3_000_000,
}

# Currency units per 1 USD; guardrails only
USD_FX_UNITS = {
    "USD": 1.0,
    "EUR": 0.92,
    "GBP": 0.79,
    "CAD": 1.36,
    "AUD": 1.52,
    "CHF": 0.90,
    "SEK": 10.4,
    "NOK": 10.4,
    "DKK": 6.8,
    "SGD": 1.35,
    "INR": 83.0,
    "NZD": 1.65,
}

CONFIDENCE_BY_SOURCE = {
    SalarySource.ATS: 95,
    SalarySource.SALARY_RAW: 90,
    SalarySource.DESCRIPTION: 80,
}

DESCRIPTION_USD_CAP = 600_000
HUNDREDFOLD_FLOOR_USD = 10_000

CURRENCY_SYMBOLS = {
    "USD": "$", "EUR": "€", "GBP": "£", "AUD": "A$", "CAD": "C$", "CHF": "CHF ",
    "SGD": "S$", "NZD": "NZ$", "INR": "₹", "SEK": "kr ", "NOK": "kr ", "DKK": "kr ",
}

LEVER_SALARY_LABEL = re.compile(r"compensation|salary|pay range|\brange\b", re.IGNORECASE)


class ParsedSalary(NamedTuple):
    min: Optional[float]
    max: Optional[float]
    currency: Optional[str]
    interval: SalaryInterval
    ambiguous: bool = False


# ==================== DETECTION ====================

def normalize_currency_code(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    value = raw.strip().upper()
    return CURRENCY_ALIASES.get(value, value) or None


def detect_currency(text: str, country: Optional[str] = None) -> Tuple[Optional[str], bool]:
    """
    Detect the currency of a salary mention.

    Args:
        text: Salary text
        country: Optional country code or name used to read a bare "$"

    Returns:
        (currency or None, ambiguous flag)
    """
    codes: List[str] = []
    for pattern, currency in CURRENCY_CODE_PATTERNS:
        if pattern.search(text) and currency not in codes:
            codes.append(currency)
    if len(codes) > 1:
        return codes[0], True
    if codes:
        return codes[0], False

    for pattern, currency in CURRENCY_SYMBOL_PATTERNS:
        if pattern.search(text):
            return currency, False

    if BARE_DOLLAR.search(text):
        hint = (country or "").strip().upper()
        return DOLLAR_BY_COUNTRY.get(hint, "USD"), False

    if KRONA_WITHOUT_CODE.search(text):
        return None, True

    return None, False


def detect_interval(text: str) -> SalaryInterval:
    """
    Detect the pay interval.

    Keywords only count near a money token, so phrases like "hourly
    employees" elsewhere in a description do not leak in. No money token
    means yearly.
    """
    lower = text.lower()
    windows = [
        lower[max(0, m.start() - INTERVAL_WINDOW):m.end() + INTERVAL_WINDOW]
        for m in MONEY_TOKEN.finditer(text)
    ]

    for near in windows:
        for interval, pattern in INTERVAL_PATTERNS:
            if pattern.search(near):
                return interval
    return SalaryInterval.YEAR


def extract_amounts(text: str, currency: Optional[str] = None) -> List[float]:
    """
    Pull plausible money amounts out of text.

    Handles "120k", "1.2m", "120,000" and (for INR) "18 lakh". Bare
    four-digit years are discarded. Values under 1000 are noise unless the
    text carries a currency, so "$150 per hour" keeps its rate.
    """
    text = RETIREMENT_PLAN.sub(" ", text)
    floor = MIN_MARKED_VALUE if currency else MIN_PLAUSIBLE_VALUE
    amounts: List[float] = []

    if currency == "INR":
        for match in LAKH_LITERAL.finditer(text):
            amounts.append(float(match.group(1)) * 100_000)
        if amounts:
            return sorted(set(amounts))

    for match in NUMBER_LITERAL.finditer(text):
        literal, suffix = match.group(1), (match.group(2) or "").lower()
        try:
            value = float(literal.replace(",", ""))
        except ValueError:
            continue
        if suffix == "k":
            value *= 1_000
        elif suffix == "m":
            value *= 1_000_000

        if not (floor <= value <= MAX_PLAUSIBLE_VALUE):
            continue
        if not suffix and re.fullmatch(r"\d{4}", literal) and 1900 <= value <= 2100:
            continue
        amounts.append(value)

    return sorted(set(amounts))


def parse_salary_text(text: Optional[str], country_code: Optional[str] = None) -> Optional[ParsedSalary]:
    """
    Parse a free-text salary mention.

    Args:
        text: Salary string or plain-text description
        country_code: Optional country hint for a bare "$"

    Returns:
        ParsedSalary, or None when no plausible amount is present
    """
    if not text or not text.strip():
        return None

    cleaned = text.strip()
    currency, ambiguous = detect_currency(cleaned, country_code)
    amounts = extract_amounts(cleaned, currency)
    if not amounts:
        return None

    return ParsedSalary(
        min=amounts[0],
        max=amounts[-1],
        currency=currency,
        interval=detect_interval(cleaned),
        ambiguous=ambiguous,
    )


# ==================== ANNUALIZATION & GUARDRAILS ====================

def annualize(value: Optional[float], interval: SalaryInterval) -> Optional[int]:
    if value is None:
        return None
    return int(round(value * INTERVAL_FACTORS[interval]))


def get_annual_cap(currency: Optional[str]) -> int:
    return ANNUAL_CAPS.get((currency or "").upper(), DEFAULT_ANNUAL_CAP)


def to_usd(amount: Optional[float], currency: Optional[str]) -> Optional[float]:
    rate = USD_FX_UNITS.get((currency or "").upper())
    if amount is None or amount <= 0 or not rate:
        return None
    return amount / rate


def correct_hundredfold(
    min_annual: Optional[int],
    max_annual: Optional[int],
    currency: Optional[str],
) -> Tuple[Optional[int], Optional[int], bool]:
    """
    Undo the "stored in cents" provider defect.

    Applies only when every present value sits between the cap and 100x the
    cap and dividing by 100 lands each one inside the plausible band.

    Returns:
        (min_annual, max_annual, corrected)
    """
    values = [v for v in (min_annual, max_annual) if v is not None]
    if not values:
        return min_annual, max_annual, False

    cap = get_annual_cap(currency)
    rate = USD_FX_UNITS.get((currency or "").upper(), 1.0)
    floor = HUNDREDFOLD_FLOOR_USD * rate

    in_band = all(cap < v <= cap * 100 for v in values)
    relocated = all(floor <= v / 100 <= cap for v in values)
    if not (in_band and relocated):
        return min_annual, max_annual, False

    def fix(v: Optional[int]) -> Optional[int]:
        return int(round(v / 100)) if v is not None else None

    return fix(min_annual), fix(max_annual), True


def normalize_salary(
    min_value: Optional[float],
    max_value: Optional[float],
    currency: Optional[str],
    interval: Optional[SalaryInterval] = None,
    source: SalarySource = SalarySource.SALARY_RAW,
    ambiguous: bool = False,
) -> SalaryNormalizationResult:
    """
    Annualize and classify a salary.

    Args:
        min_value: Raw minimum for the interval
        max_value: Raw maximum for the interval
        currency: Currency code or symbol
        interval: Pay interval; defaults to year
        source: Where the figures came from (drives confidence)
        ambiguous: Currency could not be pinned down

    Returns:
        SalaryNormalizationResult with exactly one reason
    """
    interval = SalaryInterval(interval) if interval else SalaryInterval.YEAR
    currency = normalize_currency_code(currency)
    if min_value is not None and max_value is None:
        max_value = min_value
    if max_value is not None and min_value is None:
        min_value = max_value

    base = dict(
        min=min_value,
        max=max_value,
        currency=currency,
        interval=interval,
        confidence=CONFIDENCE_BY_SOURCE[source],
        source=source,
    )

    def rejected(reason: SalaryParseReason, **extra: Any) -> SalaryNormalizationResult:
        return SalaryNormalizationResult(**{**base, **extra}, reason=reason)

    if ambiguous:
        return rejected(SalaryParseReason.AMBIGUOUS)

    threshold = HIGH_SALARY_THRESHOLDS.get(currency or "")
    if threshold is None:
        return rejected(SalaryParseReason.UNKNOWN_CURRENCY)

    min_annual = annualize(min_value, interval)
    max_annual = annualize(max_value, interval)
    if min_annual is None and max_annual is None:
        return rejected(SalaryParseReason.BAD_RANGE)
    if min_annual is not None and max_annual is not None:
        if min_annual > max_annual or (min_annual > 0 and max_annual / min_annual > 3):
            return rejected(SalaryParseReason.BAD_RANGE)

    min_annual, max_annual, corrected = correct_hundredfold(min_annual, max_annual, currency)
    if corrected:
        base["min"] = min_value / 100 if min_value is not None else None
        base["max"] = max_value / 100 if max_value is not None else None
        logger.info(
            "Corrected hundredfold salary",
            extra={"currency": currency, "min_annual": min_annual, "max_annual": max_annual},
        )
    base["corrected_hundredfold"] = corrected

    cap = get_annual_cap(currency)
    if any(v is not None and v > cap for v in (min_annual, max_annual)):
        return rejected(SalaryParseReason.TOO_HIGH)

    top = max_annual if max_annual is not None else min_annual
    if source == SalarySource.DESCRIPTION:
        usd = to_usd(top, currency)
        if usd is not None and usd > DESCRIPTION_USD_CAP:
            return rejected(SalaryParseReason.CAPPED_DESCRIPTION)

    annual = dict(min_annual=min_annual, max_annual=max_annual)
    if top is None or top < threshold:
        return rejected(SalaryParseReason.BELOW_THRESHOLD, **annual)

    return SalaryNormalizationResult(**base, **annual, reason=SalaryParseReason.OK, is_high_salary=True)


def normalize_salary_text(
    text: Optional[str],
    source: SalarySource = SalarySource.SALARY_RAW,
    country_code: Optional[str] = None,
) -> Optional[SalaryNormalizationResult]:
    """Parse then normalize; None when the text holds no salary at all."""
    parsed = parse_salary_text(text, country_code)
    if parsed is None:
        return None
    return normalize_salary(
        parsed.min,
        parsed.max,
        parsed.currency,
        parsed.interval,
        source=source,
        ambiguous=parsed.ambiguous,
    )


# ==================== PROVIDER HELPERS ====================

def _parse_pay_range_number(raw: str) -> Optional[float]:
    raw = raw.strip()
    if re.fullmatch(r"\d{1,3}(?:\.\d{3})+", raw):
        return float(raw.replace(".", ""))
    try:
        return float(raw.replace(",", ""))
    except ValueError:
        return None


PAY_RANGE_SPAN = re.compile(r"([£$€])?\s*([\d][\d.,]*)\s*(USD|EUR|GBP|AUD|CAD|CHF)?", re.IGNORECASE)


def parse_greenhouse_pay_range(html: Optional[str]) -> Optional[ParsedSalary]:
    """
    Read a Greenhouse ``pay-range`` block (two spans: min and max).

    Descriptions from the boards API are often entity-escaped; both forms
    are accepted. EU dotted thousands ("155.000") are supported.
    """
    if not html:
        return None
    if not TAG_RE.search(html) and ESCAPED_TAG_RE.search(html):
        html = BeautifulSoup(html, "lxml").get_text()

    soup = BeautifulSoup(html, "lxml")
    for block in soup.select('[class*="pay-range"]'):
        values: List[float] = []
        symbol: Optional[str] = None
        code: Optional[str] = None
        for span in block.find_all("span"):
            match = PAY_RANGE_SPAN.search(span.get_text(" ", strip=True))
            if not match:
                continue
            value = _parse_pay_range_number(match.group(2))
            if value is None:
                continue
            values.append(value)
            symbol = symbol or match.group(1)
            code = code or match.group(3)
            if len(values) == 2:
                break

        if len(values) < 2:
            continue
        low, high = values
        if low < 30_000 or high > 2_000_000 or low > high:
            return None
        currency = (code or "").upper() or CURRENCY_ALIASES.get(symbol or "$", "USD")
        return ParsedSalary(low, high, currency, SalaryInterval.YEAR)
    return None


def build_lever_salary_text(posting: Dict[str, Any]) -> Optional[str]:
    """
    Collect salary mentions from a Lever posting into one string.

    Looks at the structured ``salaryRange``, the salary description, list
    sections labelled compensation/salary/range, and custom additional
    fields with the same keywords.
    """
    mentions: List[str] = []

    salary_range = posting.get("salaryRange")
    if isinstance(salary_range, dict) and (salary_range.get("min") or salary_range.get("max")):
        unit = str(salary_range.get("interval") or "per-year").lower()
        per = next((i.value for i in INTERVAL_FACTORS if i.value in unit), "year")
        low = float(salary_range.get("min") or salary_range.get("max"))
        high = float(salary_range.get("max") or salary_range.get("min"))
        mentions.append(f"{salary_range.get('currency') or ''} {low:,.0f} - {high:,.0f} per {per}".strip())

    for key in ("salaryDescriptionPlain", "salaryDescription"):
        if posting.get(key):
            mentions.append(html_to_text(str(posting[key])))
            break

    for section in posting.get("lists") or []:
        if isinstance(section, dict) and LEVER_SALARY_LABEL.search(str(section.get("text") or "")):
            content = html_to_text(str(section.get("content") or ""))
            if content:
                mentions.append(content)

    additional = posting.get("additionalFields") or []
    if isinstance(additional, dict):
        additional = [{"text": k, "value": v} for k, v in additional.items()]
    for field in additional:
        if not isinstance(field, dict):
            continue
        label = str(field.get("text") or field.get("label") or field.get("name") or "")
        value = field.get("value") or field.get("content")
        if value and LEVER_SALARY_LABEL.search(label):
            mentions.append(html_to_text(str(value)))

    unique = _dedupe(m for m in mentions if m)
    return " ; ".join(unique) if unique else None


def _dedupe(items: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


# ==================== DISPLAY ====================

def _compact(amount: float) -> str:
    if amount >= 1_000_000:
        return f"{amount / 1_000_000:.1f}M"
    if amount >= 1_000:
        return f"{round(amount / 1_000)}K"
    return f"{amount:,.0f}"


def format_salary_range(
    min_annual: Optional[float],
    max_annual: Optional[float],
    currency: Optional[str],
) -> str:
    """Human-readable annual range; values past the cap show as a high-salary role."""
    if min_annual is None and max_annual is None:
        return "Salary not specified"

    symbol = CURRENCY_SYMBOLS.get((currency or "USD").upper(), "$")
    cap = get_annual_cap(currency)
    low = min_annual if min_annual is not None and 0 < min_annual <= cap else None
    high = max_annual if max_annual is not None and 0 < max_annual <= cap else None

    if low is None and high is None:
        return f"{symbol}High salary role"
    if low is not None and high is not None and low != high:
        return f"{symbol}{_compact(low)} - {symbol}{_compact(high)}"
    if low is not None:
        return f"{symbol}{_compact(low)}+"
    return f"Up to {symbol}{_compact(high)}"
