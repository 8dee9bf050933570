import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional


logger = logging.getLogger(__name__)

SCALES = ("thousands", "millions", "billions", "crores", "lakhs", "units")
CURRENCIES = ("USD", "INR", "EUR", "GBP", "unknown")

# Divide a raw value by these to land in billions.
SCALE_DIVISORS = {
    "thousands": 1_000_000,
    "millions": 1_000,
    "billions": 1,
    "crores": 100,
    "lakhs": 10_000,
}
UNITS_DIVISOR = 1_000_000_000

# Share counts are canonical in millions, so they get their own table.
SHARE_SCALE_DIVISORS = {
    "thousands": 1_000,
    "millions": 1,
    "billions": 0.001,
    "crores": 0.1,
    "lakhs": 10,
}
SHARE_UNITS_DIVISOR = 1_000_000

# USD per unit of currency. Approximate, not live.
DEFAULT_CURRENCY_FACTORS = {
    "USD": 1.0,
    "INR": 1.0 / 83,
    "EUR": 1.1,
    "GBP": 1.25,
    "unknown": 1.0,
}

SCALE_PATTERNS = [
    ("thousands", re.compile(r"\b(?:in\s+)?thousands?\b", re.IGNORECASE)),
    ("millions", re.compile(r"\b(?:in\s+)?millions?\b", re.IGNORECASE)),
    ("billions", re.compile(r"\b(?:in\s+)?billions?\b", re.IGNORECASE)),
    ("crores", re.compile(r"\b(?:in\s+)?crores?\b", re.IGNORECASE)),
    ("lakhs", re.compile(r"\b(?:in\s+)?lakhs?\b", re.IGNORECASE)),
]

CURRENCY_PATTERNS = [
    ("USD", re.compile(r"\$|\bUSD\b|\bUS\s*\$|\bdollars?\b", re.IGNORECASE)),
    ("INR", re.compile(r"₹|\bINR\b|\bRs\b\.?|\brupees?\b", re.IGNORECASE)),
    ("EUR", re.compile(r"€|\bEUR\b|\beuros?\b", re.IGNORECASE)),
    ("GBP", re.compile(r"£|\bGBP\b|\bpounds?\b", re.IGNORECASE)),
]

PERIOD_PATTERN = re.compile(
    r"(three\s+months\s+ended|quarter\s+ended|for\s+the\s+period\s+ended|fiscal\s+year\s+ended)\s*([^.]*)",
    re.IGNORECASE,
)
QUARTERLY_PATTERN = re.compile(r"quarter|three\s+months", re.IGNORECASE)

FINANCIAL_PATTERNS = {
    "revenue": re.compile(
        r"\b(?:total\s+)?(?:net\s+)?(?:revenues?|sales|income\s+from\s+operations|operating\s+revenues?)\b",
        re.IGNORECASE,
    ),
    "net_income": re.compile(
        r"\b(?:net\s+(?:income|earnings|profit)|profit\s+after\s+tax|earnings\s+after\s+tax)\b",
        re.IGNORECASE,
    ),
    "total_assets": re.compile(r"\btotal\s+assets\b", re.IGNORECASE),
    "cash_equivalents": re.compile(r"\bcash\s+(?:and\s+)?(?:cash\s+)?equivalents?\b", re.IGNORECASE),
    "total_debt": re.compile(r"\b(?:total\s+)?(?:debt|borrowings)\b", re.IGNORECASE),
    "ebitda": re.compile(r"\bebitda\b", re.IGNORECASE),
    "gross_profit": re.compile(r"\bgross\s+profit\b", re.IGNORECASE),
    "operating_income": re.compile(r"\boperating\s+(?:income|profit)\b", re.IGNORECASE),
    "shares_outstanding": re.compile(
        r"\b(?:shares?\s+outstanding|outstanding\s+shares?)\b", re.IGNORECASE
    ),
    "shareholders_equity": re.compile(
        r"\b(?:book\s+value|shareholders?['’]?\s+equity|stockholders?['’]?\s+equity)\b",
        re.IGNORECASE,
    ),
}

SHARE_METRICS = {"shares_outstanding"}

NUMBER_PATTERN = re.compile(r"\(?\s*\d[\d,]*(?:\.\d+)?\s*\)?")
# A period after these abbreviations does not end the sentence.
SENTENCE_SPLIT = re.compile(
    r"(?<!\bRs)(?<!\bInc)(?<!\bCo)(?<!\bNo)(?<!\bLtd)(?<!\bCorp)(?<!\bU\.S)[.!?]+(?=\s|$)"
)
FINANCIAL_VOCABULARY = re.compile(r"revenue|income|profit|loss|assets|debt", re.IGNORECASE)

BASE_CONFIDENCE = 0.7
PLAUSIBLE_RANGE = (0.001, 10_000)
IMPLAUSIBLE_RANGE = (0.0001, 100_000)
EVIDENCE_LIMIT = 150


@dataclass(frozen=True)
class FinancialContext:
    scale: str = "units"
    currency: str = "unknown"
    period: Optional[str] = None
    is_quarterly: bool = False


@dataclass
class ExtractedNumber:
    value: float
    original_text: str
    confidence: float
    unit: str
    currency: str
    source: str = "heuristic"
    evidence_snippet: str = ""


def detect_context(text: str) -> FinancialContext:
    if not isinstance(text, str):
        raise TypeError(f"text must be str, got {type(text).__name__}")

    scale = "units"
    for name, pattern in SCALE_PATTERNS:
        if pattern.search(text):
            scale = name
            break

    currency = "unknown"
    for name, pattern in CURRENCY_PATTERNS:
        if pattern.search(text):
            currency = name
            break

    period = None
    is_quarterly = False
    match = PERIOD_PATTERN.search(text)
    if match:
        period = match.group(2).strip() or None
        is_quarterly = bool(QUARTERLY_PATTERN.search(match.group(1)))

    return FinancialContext(scale=scale, currency=currency, period=period, is_quarterly=is_quarterly)


def convert_to_canonical(
    value: float,
    scale: str,
    currency: str,
    currency_factors: Optional[Mapping[str, float]] = None,
) -> float:
    """Scale first, then currency; result in billions USD rounded to 3 places."""
    factors = currency_factors or DEFAULT_CURRENCY_FACTORS
    converted = value / SCALE_DIVISORS.get(scale, UNITS_DIVISOR)
    converted = converted * factors.get(currency, 1.0)
    return round(converted * 1000) / 1000


def convert_share_count(value: float, scale: str) -> float:
    converted = value / SHARE_SCALE_DIVISORS.get(scale, SHARE_UNITS_DIVISOR)
    return round(converted * 1000) / 1000


def split_sentences(text: str) -> List[str]:
    return [s for s in SENTENCE_SPLIT.split(text) if s.strip()]


def parse_number_token(token: str) -> Optional[float]:
    stripped = token.strip()
    negative = stripped.startswith("(") and stripped.endswith(")")
    cleaned = re.sub(r"[(),\s]", "", stripped)
    if not cleaned:
        return None
    try:
        number = float(cleaned)
    except ValueError:
        return None
    return -number if negative else number


def extract_candidates(
    text: str,
    context: Optional[FinancialContext] = None,
    currency_factors: Optional[Mapping[str, float]] = None,
) -> Dict[str, List[ExtractedNumber]]:
    if not isinstance(text, str):
        raise TypeError(f"text must be str, got {type(text).__name__}")
    if context is None:
        context = detect_context(text)

    sentences = split_sentences(text)
    results: Dict[str, List[ExtractedNumber]] = {}
    for metric, pattern in FINANCIAL_PATTERNS.items():
        numbers: List[ExtractedNumber] = []
        for sentence in sentences:
            if pattern.search(sentence):
                numbers.extend(_numbers_from_sentence(sentence, metric, context, currency_factors))
        if numbers:
            numbers.sort(key=lambda n: n.confidence, reverse=True)
            results[metric] = numbers
    logger.debug(
        "heuristic candidates: %s",
        {metric: len(numbers) for metric, numbers in results.items()},
    )
    return results


def _numbers_from_sentence(
    sentence: str,
    metric: str,
    context: FinancialContext,
    currency_factors: Optional[Mapping[str, float]],
) -> List[ExtractedNumber]:
    numbers: List[ExtractedNumber] = []
    snippet = sentence.strip()[:EVIDENCE_LIMIT]
    for match in NUMBER_PATTERN.finditer(sentence):
        raw = parse_number_token(match.group(0))
        if raw is None:
            continue
        if metric in SHARE_METRICS:
            value = convert_share_count(raw, context.scale)
        else:
            value = convert_to_canonical(raw, context.scale, context.currency, currency_factors)
        numbers.append(
            ExtractedNumber(
                value=value,
                original_text=match.group(0).strip(),
                confidence=_score_confidence(sentence, metric, value),
                unit=context.scale,
                currency=context.currency,
                source="heuristic",
                evidence_snippet=snippet,
            )
        )
    return numbers


def _score_confidence(sentence: str, metric: str, value: float) -> float:
    confidence = BASE_CONFIDENCE
    if PLAUSIBLE_RANGE[0] < value < PLAUSIBLE_RANGE[1]:
        confidence += 0.1
    if FINANCIAL_VOCABULARY.search(sentence):
        confidence += 0.1
    if value < IMPLAUSIBLE_RANGE[0] or value > IMPLAUSIBLE_RANGE[1]:
        confidence -= 0.2
    if metric.replace("_", " ") in sentence.lower():
        confidence += 0.1
    return round(max(0.0, min(1.0, confidence)), 2)
