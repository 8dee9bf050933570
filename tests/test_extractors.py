import requests
import pytest

from fincompare.extractors import (
    FallbackMetricsExtractor,
    HeuristicOnlyExtractor,
    LLMMetricsExtractor,
    build_default_extractor,
    is_connectivity_error,
    run_with_fallback,
)
from fincompare.llm_client import LLMServiceError
from tests.helpers.fake_llm import FakeLLM


@pytest.mark.parametrize(
    "exc,expected",
    [
        (requests.exceptions.Timeout("read timed out"), True),
        (requests.exceptions.ConnectionError("boom"), True),
        (LLMServiceError("server error", status=503), True),
        (LLMServiceError("invalid api key", status=401), True),
        (LLMServiceError("request timeout", status=408), True),
        (LLMServiceError("bad request", status=400), False),
        (RuntimeError("ECONNRESET by peer"), True),
        (RuntimeError("getaddrinfo EAI_AGAIN api.openai.com"), True),
        (ValueError("bad json"), False),
    ],
)
def test_is_connectivity_error(exc, expected):
    assert is_connectivity_error(exc) is expected


def test_llm_extractor_canonicalizes_labels():
    llm = FakeLLM([{"companyName": "X Corp", "Total Revenue": 10.0, "netIncome": 1.2, "rawMetrics": {}}])
    result = LLMMetricsExtractor(llm).extract_metrics("Revenue 10", "X Corp")
    assert result == {"company_name": "X Corp", "revenue": 10.0, "net_income": 1.2}
    assert "X Corp" in llm.calls[0]["user"]


def test_llm_extractor_truncates_document_text():
    llm = FakeLLM([{}])
    LLMMetricsExtractor(llm).extract_metrics("a" * 9000 + "TAIL")
    assert "TAIL" not in llm.calls[0]["user"]
    assert "a" * 8000 in llm.calls[0]["user"]


def test_fallback_advances_on_connectivity_errors():
    primary = FakeLLM([LLMServiceError("upstream down", status=502)], provider="openai")
    secondary = FakeLLM([{"revenue": 5.0}], provider="gemini")
    extractor = build_default_extractor([primary, secondary])
    assert extractor.extract_metrics("text") == {"revenue": 5.0}
    assert len(primary.calls) == 1
    assert len(secondary.calls) == 1


def test_fallback_propagates_other_errors():
    primary = FakeLLM([ValueError("schema mismatch")])
    secondary = FakeLLM([{"revenue": 5.0}])
    extractor = FallbackMetricsExtractor([LLMMetricsExtractor(primary), LLMMetricsExtractor(secondary)])
    with pytest.raises(ValueError, match="schema mismatch"):
        extractor.extract_metrics("text")
    assert secondary.calls == []


def test_fallback_degrades_to_heuristics_when_every_provider_is_down():
    extractor = build_default_extractor(
        [FakeLLM([requests.exceptions.Timeout("timeout")]), FakeLLM([RuntimeError("network error")])]
    )
    assert extractor.extract_metrics("text") == {}


def test_fallback_without_final_reraises_last_connectivity_error():
    extractor = FallbackMetricsExtractor([LLMMetricsExtractor(FakeLLM([LLMServiceError("down", status=500)]))])
    with pytest.raises(LLMServiceError):
        extractor.extract_metrics("text")


def test_run_with_fallback_requires_something_to_run():
    with pytest.raises(ValueError):
        run_with_fallback([])
    assert run_with_fallback([], lambda: "final") == "final"


def test_heuristic_only_extractor_returns_empty_bag():
    assert HeuristicOnlyExtractor().extract_metrics("Revenue 10") == {}
    with pytest.raises(TypeError):
        HeuristicOnlyExtractor().extract_metrics(None)
