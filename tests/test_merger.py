import pytest

from fincompare.merger import merge_extraction_results
from fincompare.number_parser import ExtractedNumber


def _candidate(value, confidence, snippet="snippet"):
    return ExtractedNumber(
        value=value,
        original_text=str(value),
        confidence=confidence,
        unit="billions",
        currency="USD",
        evidence_snippet=snippet,
    )


def test_ai_value_wins_when_present():
    merged = merge_extraction_results({"revenue": [_candidate(5.0, 0.9)]}, {"revenue": 7.0})
    assert merged == {"revenue": 7.0}


@pytest.mark.parametrize(
    "ai_result",
    [
        {"revenue": None},
        {"revenue": 0},
        {"revenue": 0.0},
        {"revenue": "0.00"},
        {"revenue": "$0"},
        {"revenue": "0 billion"},
        {"revenue": "null"},
        {},
        None,
    ],
)
def test_heuristic_fills_null_zero_or_absent_ai_value(ai_result):
    candidates = {
        "revenue": [
            _candidate(3.0, 0.7, "low"),
            _candidate(5.0, 0.9, "Revenue was 5.0 billion"),
        ]
    }
    merged = merge_extraction_results(candidates, ai_result)
    assert merged["revenue"] == 5.0
    assert merged["revenue_confidence"] == 0.9
    assert merged["revenue_evidence"] == "Revenue was 5.0 billion"


def test_metrics_without_candidates_keep_ai_values():
    merged = merge_extraction_results(
        {"revenue": [], "net_income": [_candidate(1.0, 0.8)]},
        {"revenue": None, "ebitda": 2.0, "company_name": "X Corp"},
    )
    assert merged["revenue"] is None
    assert merged["ebitda"] == 2.0
    assert merged["company_name"] == "X Corp"
    assert merged["net_income"] == 1.0
    assert "revenue_confidence" not in merged


def test_merge_does_not_mutate_ai_result():
    ai_result = {"revenue": None}
    merge_extraction_results({"revenue": [_candidate(5.0, 0.9)]}, ai_result)
    assert ai_result == {"revenue": None}


def test_merge_rejects_non_mapping_ai_result():
    with pytest.raises(TypeError):
        merge_extraction_results({}, ["revenue"])


def test_non_zero_string_answer_is_kept():
    merged = merge_extraction_results({"revenue": [_candidate(5.0, 0.9)]}, {"revenue": "$1.2 billion"})
    assert merged == {"revenue": "$1.2 billion"}
