import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from .web_cache import WebDataCache


logger = logging.getLogger(__name__)

SECTOR_PATTERNS = [
    re.compile(r"sector[:\s]+([^,\n.]+)", re.IGNORECASE),
    re.compile(r"industry[:\s]+([^,\n.]+)", re.IGNORECASE),
    re.compile(
        r"(automotive|technology|healthcare|financial|energy|consumer|industrial|materials"
        r"|utilities|telecommunications|real estate)",
        re.IGNORECASE,
    ),
]
PRICE_PATTERNS = [
    re.compile(r"(?:current price|stock price|share price)[:\s]*\$?([\d,]+\.?\d*)", re.IGNORECASE),
    re.compile(r"trading at[:\s]*\$?([\d,]+\.?\d*)", re.IGNORECASE),
    re.compile(r"price[:\s]*\$?([\d,]+\.?\d*)", re.IGNORECASE),
]
WEEK_HIGH_PATTERN = re.compile(r"(?:52.?week high|52w high)[:\s]*\$?([\d,]+\.?\d*)", re.IGNORECASE)
WEEK_LOW_PATTERN = re.compile(r"(?:52.?week low|52w low)[:\s]*\$?([\d,]+\.?\d*)", re.IGNORECASE)
MARKET_CAP_PATTERNS = [
    re.compile(r"market cap[:\s]*\$?([\d,]+\.?\d*)\s*(billion|b)", re.IGNORECASE),
    re.compile(r"market capitalization[:\s]*\$?([\d,]+\.?\d*)\s*(billion|b)", re.IGNORECASE),
    re.compile(r"market cap[:\s]*\$?([\d,]+\.?\d*)\s*(million|m)", re.IGNORECASE),
    re.compile(r"market cap[:\s]*\$?([\d,]+\.?\d*)\s*(trillion|t)", re.IGNORECASE),
]
# Market cap lands in billions.
MARKET_CAP_UNITS = {"b": 1.0, "m": 0.001, "t": 1000.0}
DIVIDEND_YIELD_PATTERN = re.compile(r"dividend yield[:\s]*([\d,]+\.?\d*)%?", re.IGNORECASE)
EPS_PATTERNS = [
    re.compile(r"eps[:\s]*\$?([\d,]+\.?\d*)", re.IGNORECASE),
    re.compile(r"earnings per share[:\s]*\$?([\d,]+\.?\d*)", re.IGNORECASE),
]
PE_RATIO_PATTERNS = [
    re.compile(r"p/e ratio[:\s]*([\d,]+\.?\d*)", re.IGNORECASE),
    re.compile(r"pe ratio[:\s]*([\d,]+\.?\d*)", re.IGNORECASE),
    re.compile(r"price.?to.?earnings[:\s]*([\d,]+\.?\d*)", re.IGNORECASE),
]

ENRICHABLE_FIELDS = (
    "revenue",
    "net_income",
    "total_assets",
    "cash_equivalents",
    "profit_margin",
    "yoy_growth",
    "ebitda",
    "total_debt",
)


@dataclass
class MarketDataResult:
    sector: Optional[str] = None
    current_price: Optional[float] = None
    week_high_52: Optional[float] = None
    week_low_52: Optional[float] = None
    market_cap: Optional[float] = None
    dividend_yield: Optional[float] = None
    eps: Optional[float] = None
    pe_ratio: Optional[float] = None
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["last_updated"] = self.last_updated.isoformat()
        return data


def generate_search_query(company_name: str, year: Optional[int] = None) -> str:
    year = year or datetime.now(timezone.utc).year
    return (
        f"{company_name} stock price market cap P/E ratio dividend yield EPS "
        f"52 week high low sector industry {year}"
    )


def parse_market_data(search_results: Optional[str], company_name: str) -> Optional[MarketDataResult]:
    if not search_results:
        logger.warning("No search results for %s", company_name)
        return None

    text = search_results.lower()
    result = MarketDataResult()

    for pattern in SECTOR_PATTERNS:
        match = pattern.search(text)
        if match:
            result.sector = _clean_and_capitalize(match.group(1))
            break

    result.current_price = _first_number(PRICE_PATTERNS, text)
    result.week_high_52 = _first_number([WEEK_HIGH_PATTERN], text)
    result.week_low_52 = _first_number([WEEK_LOW_PATTERN], text)

    for pattern in MARKET_CAP_PATTERNS:
        match = pattern.search(text)
        if match:
            value = _parse_numeric(match.group(1))
            if value is not None:
                result.market_cap = value * MARKET_CAP_UNITS[match.group(2)[0].lower()]
            break

    result.dividend_yield = _first_number([DIVIDEND_YIELD_PATTERN], text)
    result.eps = _first_number(EPS_PATTERNS, text)
    result.pe_ratio = _first_number(PE_RATIO_PATTERNS, text)

    logger.debug("market data for %s: %s", company_name, result)
    return result


def parse_market_data_for_companies(
    search_results_map: Mapping[str, Optional[str]]
) -> Dict[str, Optional[MarketDataResult]]:
    return {
        company: parse_market_data(results, company)
        for company, results in search_results_map.items()
    }


def identify_missing_fields(metrics: Mapping[str, Any]) -> List[str]:
    return [name for name in ENRICHABLE_FIELDS if not metrics.get(name)]


def generate_disclaimer(source: str) -> str:
    return (
        f"*This data was supplemented from {source} and may not reflect official company filings. "
        "Please verify with the company's official financial statements and SEC filings."
    )


class MarketDataService:
    def __init__(self, search_client=None, cache: Optional[WebDataCache] = None) -> None:
        self.search_client = search_client
        self.cache = cache if cache is not None else WebDataCache(start_sweeper=False)

    def fetch_search_text(self, company_name: str) -> Optional[str]:
        if self.search_client is None:
            return None
        query = generate_search_query(company_name)
        return self.cache.get_or_fetch(query, lambda: self.search_client.search_text(query))

    def fetch(self, company_name: str) -> Optional[MarketDataResult]:
        return parse_market_data(self.fetch_search_text(company_name), company_name)


def _first_number(patterns, text: str) -> Optional[float]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return _parse_numeric(match.group(1))
    return None


def _parse_numeric(value: str) -> Optional[float]:
    try:
        return float(value.replace(",", ""))
    except ValueError:
        return None


def _clean_and_capitalize(text: str) -> str:
    cleaned = re.sub(r"[^\w\s&]", "", text.strip())
    return " ".join(word[:1].upper() + word[1:].lower() for word in cleaned.split(" "))
