import pytest

from fincompare.extractors import build_default_extractor
from fincompare.market_data import MarketDataService
from fincompare.pipeline import analyze_document, compare_documents
from fincompare.run_logger import read_steps
from fincompare.web_cache import WebDataCache
from tests.helpers.fake_llm import FakeClock, FakeLLM, FakeSearchClient


TATA_TEXT = (
    "Tata Motors Limited annual report. Fiscal year ended March 31, 2024. "
    "All figures in ₹ crores. Total revenue was 8,300 crores. "
    "Net income was 830 crores. Total assets were 16,600 crores."
)

ACME_TEXT = (
    "Acme Corp annual report. Amounts in millions of dollars. "
    "Total revenue was 3,000 million. Net income was 150 million."
)


def test_analyze_document_with_heuristics_only():
    result = analyze_document(TATA_TEXT, user_company_name="Tata Motors")
    assert result["context"]["currency"] == "INR"
    assert result["context"]["scale"] == "crores"
    assert result["period"] == "March 31, 2024"
    assert result["metrics"]["revenue"] == 1.0
    assert result["metrics"]["net_income"] == 0.1
    assert result["metrics"]["total_assets"] == 2.0
    assert result["ratios"]["profit_margin"] == 10.0
    assert result["ratios"]["roa"] == 5.0
    assert result["company_name"] == "Tata Motors"
    assert result["document_company_name"] == "Tata Motors Limited"
    assert result["accepted"] is True
    assert result["name_match"]["confidence"] == 1.0
    assert result["evidence"]["revenue"]["snippet"] == "Total revenue was 8,300 crores"
    assert 0.0 < result["confidence"] <= 1.0


def test_analyze_document_writes_run_log(tmp_path):
    analyze_document(TATA_TEXT, user_company_name="Tata Motors", output_dir=tmp_path)
    steps = [entry["step"] for entry in read_steps(tmp_path)]
    assert steps == ["context", "candidates", "ai_metrics", "merged", "name_match", "ratios"]


def test_analyze_document_rejects_mismatched_company():
    result = analyze_document(TATA_TEXT, user_company_name="Infosys")
    assert result["accepted"] is False
    assert result["name_match"]["is_match"] is False
    assert any("Company name mismatch" in note for note in result["notes"])


def test_name_check_skipped_when_document_has_no_name():
    result = analyze_document("Total revenue was 5 billion dollars.", user_company_name="Acme")
    assert result["accepted"] is True
    assert result["name_match"] is None
    assert "Company name not found in document; name check skipped" in result["notes"]


def test_ai_values_win_over_heuristics():
    llm = FakeLLM([{"companyName": "Tata Motors Limited", "revenue": 2.0, "net_income": None}])
    result = analyze_document(TATA_TEXT, extractor=build_default_extractor([llm]), user_company_name="Tata Motors")
    assert result["metrics"]["revenue"] == 2.0
    assert result["metrics"]["net_income"] == 0.1
    assert result["ratios"]["profit_margin"] == 5.0
    assert "revenue" not in result["evidence"]
    assert result["evidence"]["net_income"]["snippet"] == "Net income was 830 crores"


def test_stock_price_comes_from_market_data():
    search = FakeSearchClient("Tata Motors stock price: $10.50")
    service = MarketDataService(search, WebDataCache(clock=FakeClock(), start_sweeper=False))
    result = analyze_document(TATA_TEXT, user_company_name="Tata Motors", market_data_service=service)
    assert result["metrics"]["stock_price"] == 10.5
    assert result["market_data"]["current_price"] == 10.5
    assert search.queries[0].startswith("Tata Motors")


def test_explicit_stock_price_skips_market_lookup():
    search = FakeSearchClient("Stock price: $10.50")
    service = MarketDataService(search, WebDataCache(clock=FakeClock(), start_sweeper=False))
    result = analyze_document(TATA_TEXT, stock_price=42.0, market_data_service=service)
    assert result["metrics"]["stock_price"] == 42.0
    assert search.queries == []


def test_analyze_document_rejects_non_text():
    with pytest.raises(TypeError):
        analyze_document(b"bytes")
    with pytest.raises(TypeError):
        analyze_document("text", user_company_name=42)


@pytest.mark.parametrize("count", [1, 5])
def test_compare_documents_requires_two_to_four(count):
    with pytest.raises(ValueError):
        compare_documents([{"text": ACME_TEXT, "company_name": "Acme"}] * count)


def test_compare_documents_basic_insights(tmp_path):
    result = compare_documents(
        [
            {"text": TATA_TEXT, "company_name": "Tata Motors"},
            {"text": ACME_TEXT, "company_name": "Acme"},
        ],
        output_dir=tmp_path,
    )
    companies = result["companies"]
    assert [c["company_name"] for c in companies] == ["Tata Motors", "Acme"]
    assert companies[1]["metrics"]["revenue"] == 3.0
    assert companies[1]["metrics"]["net_income"] == 0.15
    assert result["insights"]["source"] == "basic"
    assert result["insights"]["summary"] == (
        "Compared 2 companies: Tata Motors, Acme. Acme leads on revenue. Tata Motors leads on profitability."
    )
    assert (tmp_path / "company_1" / "run.log").exists()
    assert (tmp_path / "company_2" / "run.log").exists()
    assert [entry["step"] for entry in read_steps(tmp_path)] == ["insights"]


def test_compare_documents_excludes_rejected_companies_from_insights():
    result = compare_documents(
        [
            {"text": TATA_TEXT, "company_name": "Tata Motors"},
            {"text": ACME_TEXT, "company_name": "Infosys"},
        ]
    )
    assert result["companies"][1]["accepted"] is False
    assert "Infosys" not in result["insights"]["summary"]
    assert result["insights"]["summary"].startswith("Compared 1 companies: Tata Motors.")
