import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple


logger = logging.getLogger(__name__)

DEFAULT_SYNONYMS: Dict[str, Tuple[str, ...]] = {
    "revenue": (
        "total revenue",
        "net revenue",
        "operating revenue",
        "total net sales",
        "net sales",
        "sales",
        "total sales",
        "revenues",
    ),
    "net_income": (
        "net income",
        "net profit",
        "net earnings",
        "profit after tax",
        "net income after tax",
        "income after tax",
        "net profit after tax",
    ),
    "ebitda": (
        "ebitda",
        "adjusted ebitda",
        "adj. ebitda",
        "earnings before interest tax depreciation amortization",
        "operating income before depreciation",
    ),
    "total_assets": (
        "total assets",
        "assets",
        "total asset",
        "consolidated assets",
    ),
    "cash_equivalents": (
        "cash and cash equivalents",
        "cash equivalents",
        "cash reserves",
        "cash and short-term investments",
        "cash and marketable securities",
    ),
    "total_debt": (
        "total debt",
        "long-term debt",
        "short-term debt",
        "debt obligations",
        "borrowings",
        "total borrowings",
    ),
    "profit_margin": (
        "profit margin",
        "net profit margin",
        "net margin",
        "operating margin",
    ),
}

CANONICAL_METRICS = (
    "revenue",
    "net_income",
    "gross_profit",
    "operating_income",
    "ebitda",
    "total_assets",
    "current_assets",
    "current_liabilities",
    "total_debt",
    "long_term_debt",
    "short_term_debt",
    "cash_equivalents",
    "shareholders_equity",
    "shares_outstanding",
    "stock_price",
    "market_cap",
    "profit_margin",
    "yoy_growth",
)

ALIASES = {
    "debt": "total_debt",
    "cash": "cash_equivalents",
    "cash_and_equivalents": "cash_equivalents",
    "cash_and_cash_equivalents": "cash_equivalents",
    "stockholders_equity": "shareholders_equity",
    "total_shareholders_equity": "shareholders_equity",
    "total_stockholders_equity": "shareholders_equity",
    "book_value": "shareholders_equity",
    "share_price": "stock_price",
    "current_price": "stock_price",
    "net_sales": "revenue",
    "total_net_sales": "revenue",
}

IGNORED_LABELS = frozenset({"cost_of_sales", "cost_of_goods_sold", "cost_of_revenue", "raw_metrics"})

TEXT_FIELDS = ("company_name", "period", "quarter", "year", "document_type")

LEGAL_SUFFIXES = re.compile(
    r"\b(?:inc|incorporated|corp|corporation|ltd|limited|llc|co|company)\b",
    re.IGNORECASE,
)
KNOWN_SHORT_NAMES = frozenset({"3m", "ibm", "ge", "hp", "att", "bp", "ups", "amd", "aig"})

WORD_OVERLAP_THRESHOLD = 0.7
FUZZY_SIMILARITY_THRESHOLD = 0.7
MIN_WORD_LENGTH = 3


@dataclass
class NameMatchResult:
    is_match: bool
    confidence: float
    user_normalized: str
    ai_normalized: str
    issues: List[str] = field(default_factory=list)

    def accepted(self, threshold: float) -> bool:
        return self.is_match and self.confidence >= threshold


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """1 - distance / longer length; two empty strings are identical."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


class KPINormalizer:
    def __init__(
        self,
        synonyms: Optional[Mapping[str, Iterable[str]]] = None,
        overlap_threshold: float = WORD_OVERLAP_THRESHOLD,
    ) -> None:
        source = synonyms if synonyms is not None else DEFAULT_SYNONYMS
        self._synonyms: Dict[str, List[str]] = {
            name: [s.lower() for s in values] for name, values in source.items()
        }
        self.overlap_threshold = overlap_threshold

    def add_synonym(self, standard_kpi: str, synonym: str) -> None:
        self._synonyms.setdefault(standard_kpi, []).append(synonym.lower().strip())

    def get_standard_kpis(self) -> List[str]:
        return list(self._synonyms.keys())

    def find_standard_kpi(self, label: str) -> Optional[str]:
        if not isinstance(label, str):
            raise TypeError(f"label must be str, got {type(label).__name__}")
        lowered = label.lower().strip()
        if not lowered:
            return None
        for standard_name, synonyms in self._synonyms.items():
            if any(synonym in lowered for synonym in synonyms):
                return standard_name
        return None

    @staticmethod
    def normalize_company_name(name: str) -> str:
        if not isinstance(name, str):
            raise TypeError(f"company name must be str, got {type(name).__name__}")
        lowered = name.lower()
        cleaned = re.sub(r"[^\w\s]|_", "", lowered)
        cleaned = LEGAL_SUFFIXES.sub(" ", cleaned)
        return " ".join(cleaned.split())

    def validate_company_name_match(self, user_name: str, ai_name: str) -> NameMatchResult:
        user_normalized = self.normalize_company_name(user_name)
        ai_normalized = self.normalize_company_name(ai_name)

        # A name made only of legal suffixes still has to match itself.
        user_key = user_normalized or user_name.strip().lower() or user_name
        ai_key = ai_normalized or ai_name.strip().lower() or ai_name

        def result(is_match: bool, confidence: float, issues: List[str]) -> NameMatchResult:
            return NameMatchResult(
                is_match=is_match,
                confidence=confidence,
                user_normalized=user_normalized,
                ai_normalized=ai_normalized,
                issues=issues,
            )

        if user_key and user_key == ai_key:
            return result(True, 1.0, [])

        user_tokens = user_normalized.split()
        ai_tokens = ai_normalized.split()
        user_words = [w for w in user_tokens if len(w) >= MIN_WORD_LENGTH]
        ai_words = [w for w in ai_tokens if len(w) >= MIN_WORD_LENGTH]
        overlap = self._word_overlap_ratio(user_words, ai_words)

        if overlap >= self.overlap_threshold:
            return result(
                True,
                min(overlap + 0.1, 1.0),
                [f'Minor name variation detected. User: "{user_name}", Document: "{ai_name}"'],
            )

        short_confidence = _short_name_confidence(user_tokens, ai_tokens)
        if short_confidence:
            return result(
                True,
                short_confidence,
                [f'Short name match detected. User: "{user_name}", Document: "{ai_name}"'],
            )

        if _is_abbreviation_match(user_words, ai_words):
            return result(
                True,
                0.75,
                [f'Possible abbreviation match detected. User: "{user_name}", Document: "{ai_name}"'],
            )

        if user_normalized and ai_normalized and (
            user_normalized in ai_normalized or ai_normalized in user_normalized
        ):
            return result(
                True,
                0.8,
                [f'Partial name match detected. User: "{user_name}", Document: "{ai_name}"'],
            )

        return result(
            False,
            overlap,
            [
                f'Company name mismatch: User entered "{user_name}" but document contains "{ai_name}"',
                "Please verify you uploaded the correct document or check the company name spelling.",
                f"Confidence score: {overlap:.2f} (minimum required: {self.overlap_threshold:.2f})",
            ],
        )

    @staticmethod
    def _word_overlap_ratio(user_words: List[str], ai_words: List[str]) -> float:
        if not user_words or not ai_words:
            return 0.0
        shorter, longer = sorted((user_words, ai_words), key=len)
        matched = 0
        for word in shorter:
            if word in longer:
                matched += 1
            elif any(similarity(word, other) > FUZZY_SIMILARITY_THRESHOLD for other in longer):
                matched += 1
        return matched / len(shorter)

    @staticmethod
    def normalize_metric_value(value: Any) -> Optional[float]:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            number = float(value)
            return number if math.isfinite(number) else None
        if not isinstance(value, str):
            return None

        cleaned = re.sub(r"[$₹€£,\s%]", "", value).lower()
        if not cleaned:
            return None
        negative = cleaned.startswith("(") and cleaned.endswith(")")
        cleaned = cleaned.strip("()")

        divisor = 1.0
        for suffix, scale in (("billion", 1.0), ("million", 1000.0), ("bn", 1.0), ("b", 1.0), ("m", 1000.0)):
            if cleaned.endswith(suffix):
                cleaned = cleaned[: -len(suffix)]
                divisor = scale
                break

        try:
            number = float(cleaned)
        except ValueError:
            return None
        if not math.isfinite(number):
            return None
        number = number / divisor
        return -number if negative else number

    def canonical_key(self, label: str) -> Optional[str]:
        key = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", str(label).strip())
        key = re.sub(r"[^a-z0-9_]", "", key.lower().replace(" ", "_").replace("-", "_"))
        key = ALIASES.get(key, key)
        if key in IGNORED_LABELS:
            return None
        if key in CANONICAL_METRICS or key in TEXT_FIELDS:
            return key
        return self.find_standard_kpi(str(label).replace("_", " "))

    def canonicalize_labels(self, raw: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Re-key an LLM answer onto canonical names; unknown labels are dropped."""
        if raw is None:
            return {}
        if not isinstance(raw, Mapping):
            raise TypeError(f"metrics must be a mapping, got {type(raw).__name__}")
        canonical: Dict[str, Any] = {}
        for label, value in raw.items():
            key = self.canonical_key(label)
            if key is None:
                logger.debug("dropping unrecognized metric label %r", label)
                continue
            if key in canonical and canonical[key] is not None:
                continue
            canonical[key] = value
        return canonical

    def normalize_metrics_bag(self, merged: Mapping[str, Any]) -> Tuple[Dict[str, Optional[float]], Dict[str, Any]]:
        """Split a merged record into a numeric bag and its non-metric fields."""
        if not isinstance(merged, Mapping):
            raise TypeError(f"metrics must be a mapping, got {type(merged).__name__}")
        bag: Dict[str, Optional[float]] = {}
        extras: Dict[str, Any] = {}
        for key, value in merged.items():
            if key in TEXT_FIELDS or key.endswith("_evidence"):
                extras[key] = value
            elif key.endswith("_confidence"):
                extras[key] = self.normalize_metric_value(value)
            else:
                bag[key] = self.normalize_metric_value(value)
        return bag, extras


def _short_name_confidence(user_tokens: List[str], ai_tokens: List[str]) -> float:
    for user_word in user_tokens:
        for ai_word in ai_tokens:
            if user_word == ai_word and user_word in KNOWN_SHORT_NAMES:
                return 0.95
    # Prefix matching only looks at words long enough to count for overlap.
    user_words = [w for w in user_tokens if len(w) >= MIN_WORD_LENGTH]
    ai_words = [w for w in ai_tokens if len(w) >= MIN_WORD_LENGTH]
    for user_word in user_words:
        for ai_word in ai_words:
            if len(user_word) <= 3 or len(ai_word) <= 3:
                if ai_word.startswith(user_word) or user_word.startswith(ai_word):
                    return 0.85
    return 0.0


def _is_abbreviation_match(user_words: List[str], ai_words: List[str]) -> bool:
    for user_word in user_words:
        for ai_word in ai_words:
            shorter, longer = sorted((user_word, ai_word), key=len)
            if len(shorter) >= 2 and len(longer) > len(shorter) * 2 and longer.startswith(shorter):
                return True
    return False


kpi_normalizer = KPINormalizer()
