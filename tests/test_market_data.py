import pytest
import requests

from fincompare.market_data import (
    MarketDataService,
    generate_disclaimer,
    generate_search_query,
    identify_missing_fields,
    parse_market_data,
    parse_market_data_for_companies,
)
from fincompare.tavily_client import TavilyClient
from fincompare.web_cache import WebDataCache
from tests.helpers.fake_llm import FakeClock, FakeSearchClient


AMAZON_RESULTS = (
    "Amazon.com Inc. Sector: Technology & Services. Current price: $186.43. "
    "52-week high: $201.20. 52-week low: $118.35. Market cap: $1,951.2 billion. "
    "EPS: $3.96. P/E ratio: 47.1. Dividend yield: 0.0%"
)


def test_parse_market_data_reads_quote_fields():
    result = parse_market_data(AMAZON_RESULTS, "Amazon")
    assert result.sector == "Technology & Services"
    assert result.current_price == 186.43
    assert result.week_high_52 == 201.2
    assert result.week_low_52 == 118.35
    assert result.market_cap == pytest.approx(1951.2)
    assert result.eps == 3.96
    assert result.pe_ratio == 47.1
    assert result.dividend_yield == 0.0


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Market cap: $500 million", 0.5),
        ("Market cap: $2.5 trillion", 2500.0),
        ("Market capitalization: $12 billion", 12.0),
    ],
)
def test_market_cap_lands_in_billions(text, expected):
    assert parse_market_data(text, "X").market_cap == pytest.approx(expected)


def test_parse_market_data_without_results():
    assert parse_market_data("", "X") is None
    assert parse_market_data(None, "X") is None


def test_parse_market_data_for_companies():
    parsed = parse_market_data_for_companies({"A": "Stock price: $10", "B": None})
    assert parsed["A"].current_price == 10.0
    assert parsed["B"] is None


def test_to_dict_serializes_timestamp():
    data = parse_market_data("Share price: 12.5", "X").to_dict()
    assert data["current_price"] == 12.5
    assert isinstance(data["last_updated"], str)
    assert data["last_updated"].endswith("+00:00")


def test_search_query_names_company_and_year():
    query = generate_search_query("Tata Motors", 2024)
    assert query.startswith("Tata Motors stock price")
    assert query.endswith("2024")


def test_identify_missing_fields_treats_zero_as_missing():
    missing = identify_missing_fields({"revenue": 5.0, "net_income": 0, "total_assets": None})
    assert "revenue" not in missing
    assert missing[:2] == ["net_income", "total_assets"]
    assert "total_debt" in missing


def test_disclaimer_names_source():
    disclaimer = generate_disclaimer("Web search")
    assert "Web search" in disclaimer
    assert "official" in disclaimer


def test_service_caches_search_text():
    search = FakeSearchClient(AMAZON_RESULTS)
    service = MarketDataService(search, WebDataCache(clock=FakeClock(), start_sweeper=False))
    first = service.fetch("Amazon")
    second = service.fetch("Amazon")
    assert first.current_price == second.current_price == 186.43
    assert len(search.queries) == 1


def test_service_does_not_cache_empty_results():
    search = FakeSearchClient("")
    service = MarketDataService(search, WebDataCache(clock=FakeClock(), start_sweeper=False))
    assert service.fetch("Nobody") is None
    assert service.fetch("Nobody") is None
    assert len(search.queries) == 2


def test_service_without_search_client():
    assert MarketDataService().fetch("Amazon") is None


class _Resp:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        return None

    def json(self):
        return self._payload


def test_tavily_search_text_joins_results():
    calls = []

    def fake_post(url, **kwargs):
        calls.append((url, kwargs["json"]["query"]))
        return _Resp({"results": [{"title": "Quote", "content": "Stock price: $5"}, {"title": "", "content": ""}]})

    client = TavilyClient("key", post_fn=fake_post)
    assert client.search_text("acme") == "Quote\nStock price: $5"
    assert calls == [("https://api.tavily.com/search", "acme")]


def test_tavily_failures_return_no_results():
    def failing_post(*_args, **_kwargs):
        raise requests.exceptions.ConnectionError("down")

    assert TavilyClient("key", post_fn=failing_post).search("acme") == []
    assert TavilyClient("", post_fn=failing_post).search_text("acme") == ""
