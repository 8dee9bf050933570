import logging
from functools import partial
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, TypeVar

import requests

from .kpi_normalizer import kpi_normalizer
from .llm_client import LLMServiceError


logger = logging.getLogger(__name__)

MAX_PROMPT_CHARS = 8000

CONNECTIVITY_MARKERS = (
    "enotfound",
    "connection error",
    "timeout",
    "timed out",
    "network error",
    "connection refused",
    "econnreset",
    "etimedout",
    "econnrefused",
    "eai_again",
    "aborted",
)
CONNECTIVITY_STATUSES = {401, 408}

EXTRACTION_SYSTEM_PROMPT = (
    "You are a financial analyst expert. Extract financial metrics from documents "
    "and return structured JSON data."
)

EXTRACTION_SCHEMA = {
    "type": "object",
    "properties": {
        "company_name": {"type": ["string", "null"]},
        "period": {"type": ["string", "null"]},
        "year": {"type": ["number", "null"]},
        "quarter": {"type": ["string", "null"]},
        "revenue": {"type": ["number", "null"]},
        "net_income": {"type": ["number", "null"]},
        "gross_profit": {"type": ["number", "null"]},
        "operating_income": {"type": ["number", "null"]},
        "total_assets": {"type": ["number", "null"]},
        "current_assets": {"type": ["number", "null"]},
        "current_liabilities": {"type": ["number", "null"]},
        "cash_equivalents": {"type": ["number", "null"]},
        "total_debt": {"type": ["number", "null"]},
        "shareholders_equity": {"type": ["number", "null"]},
        "shares_outstanding": {"type": ["number", "null"]},
        "ebitda": {"type": ["number", "null"]},
        "profit_margin": {"type": ["number", "null"]},
        "yoy_growth": {"type": ["number", "null"]},
    },
    "required": ["company_name", "revenue", "net_income"],
}

T = TypeVar("T")


def is_connectivity_error(exc: BaseException) -> bool:
    """True when the provider looks unreachable rather than wrong."""
    if isinstance(exc, (requests.exceptions.Timeout, requests.exceptions.ConnectionError)):
        return True
    if isinstance(exc, TimeoutError):
        return True
    if isinstance(exc, LLMServiceError) and exc.status is not None:
        if exc.status in CONNECTIVITY_STATUSES or 500 <= exc.status <= 599:
            return True
    message = str(exc).lower()
    return any(marker in message for marker in CONNECTIVITY_MARKERS)


def run_with_fallback(
    attempts: Sequence[Tuple[str, Callable[[], T]]],
    final: Optional[Callable[[], T]] = None,
) -> T:
    last_err: Optional[BaseException] = None
    for label, attempt in attempts:
        try:
            return attempt()
        except Exception as exc:
            if not is_connectivity_error(exc):
                raise
            logger.warning("%s unavailable, falling back: %s", label, exc)
            last_err = exc
    if final is not None:
        if last_err is not None:
            logger.warning("all providers unavailable, using deterministic fallback")
        return final()
    if last_err is not None:
        raise last_err
    raise ValueError("run_with_fallback needs at least one attempt or a final fallback")


class MetricsExtractor:
    name = "extractor"

    def extract_metrics(self, text: str, company_name_hint: str = "") -> Dict[str, Any]:
        raise NotImplementedError


class LLMMetricsExtractor(MetricsExtractor):
    def __init__(self, llm, max_chars: int = MAX_PROMPT_CHARS) -> None:
        self.llm = llm
        self.max_chars = max_chars
        self.name = f"llm:{getattr(llm, 'provider', 'unknown')}"

    def extract_metrics(self, text: str, company_name_hint: str = "") -> Dict[str, Any]:
        if not isinstance(text, str):
            raise TypeError(f"text must be str, got {type(text).__name__}")
        hint = f"The filing is expected to belong to: {company_name_hint}\n" if company_name_hint else ""
        prompt = (
            "Analyze the following financial document text and extract key financial metrics.\n"
            "Report all monetary values in billions USD, shares_outstanding in millions of shares, "
            "profit_margin and yoy_growth as percentages. Use null for anything not found. "
            "Set company_name to the company named in the document itself.\n"
            f"{hint}\nDocument text:\n{text[: self.max_chars]}"
        )
        result = self.llm.generate_json(EXTRACTION_SYSTEM_PROMPT, prompt, EXTRACTION_SCHEMA)
        if not isinstance(result, dict):
            raise LLMServiceError("Metrics extraction returned a non-object payload")
        return kpi_normalizer.canonicalize_labels(result)


class HeuristicOnlyExtractor(MetricsExtractor):
    """No AI answer at all, so every metric comes from heuristic candidates."""

    name = "heuristic"

    def extract_metrics(self, text: str, company_name_hint: str = "") -> Dict[str, Any]:
        if not isinstance(text, str):
            raise TypeError(f"text must be str, got {type(text).__name__}")
        return {}


class FallbackMetricsExtractor(MetricsExtractor):
    name = "fallback"

    def __init__(
        self,
        extractors: Sequence[MetricsExtractor],
        final: Optional[MetricsExtractor] = None,
    ) -> None:
        self.extractors = list(extractors)
        self.final = final

    def extract_metrics(self, text: str, company_name_hint: str = "") -> Dict[str, Any]:
        attempts = [
            (extractor.name, partial(extractor.extract_metrics, text, company_name_hint))
            for extractor in self.extractors
        ]
        final = None
        if self.final is not None:
            final = partial(self.final.extract_metrics, text, company_name_hint)
        return run_with_fallback(attempts, final)


def build_default_extractor(llms: Sequence[Any]) -> MetricsExtractor:
    return FallbackMetricsExtractor(
        [LLMMetricsExtractor(llm) for llm in llms],
        final=HeuristicOnlyExtractor(),
    )
