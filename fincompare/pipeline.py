import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .document_loader import extract_company_name
from .extractors import HeuristicOnlyExtractor, MetricsExtractor
from .insights import generate_comparison_insights
from .kpi_normalizer import kpi_normalizer
from .market_data import MarketDataService
from .merger import merge_extraction_results
from .number_parser import detect_context, extract_candidates
from .ratio_calculator import RatioCalculator, ratio_calculator
from .run_logger import log_step


logger = logging.getLogger(__name__)

MIN_COMPANIES = 2
MAX_COMPANIES = 4
CANDIDATES_LOGGED_PER_METRIC = 3


def analyze_document(
    text: str,
    extractor: Optional[MetricsExtractor] = None,
    company_name: str = "",
    user_company_name: Optional[str] = None,
    stock_price: Optional[float] = None,
    market_data_service: Optional[MarketDataService] = None,
    name_match_threshold: float = 0.5,
    output_dir: Optional[Path] = None,
    currency_factors: Optional[Mapping[str, float]] = None,
    calculator: Optional[RatioCalculator] = None,
) -> Dict[str, Any]:
    if not isinstance(text, str):
        raise TypeError(f"text must be str, got {type(text).__name__}")
    if user_company_name is not None and not isinstance(user_company_name, str):
        raise TypeError(f"user_company_name must be str, got {type(user_company_name).__name__}")
    extractor = extractor or HeuristicOnlyExtractor()
    calculator = calculator or ratio_calculator

    context = detect_context(text)
    log_step(output_dir, "context", asdict(context))

    candidates = extract_candidates(text, context, currency_factors)
    log_step(
        output_dir,
        "candidates",
        {
            metric: [asdict(c) for c in numbers[:CANDIDATES_LOGGED_PER_METRIC]]
            for metric, numbers in candidates.items()
        },
    )

    document_name = company_name or extract_company_name(text)
    ai_result = extractor.extract_metrics(text, user_company_name or document_name)
    log_step(output_dir, "ai_metrics", ai_result)

    merged = merge_extraction_results(candidates, ai_result)
    log_step(output_dir, "merged", merged)

    metrics, extras = kpi_normalizer.normalize_metrics_bag(merged)
    document_name = str(extras.get("company_name") or document_name or "").strip()
    notes: List[str] = []

    name_match = None
    accepted = True
    if user_company_name:
        if document_name:
            match = kpi_normalizer.validate_company_name_match(user_company_name, document_name)
            accepted = match.accepted(name_match_threshold)
            name_match = asdict(match)
            log_step(output_dir, "name_match", name_match)
            if not accepted:
                notes.extend(match.issues)
        else:
            notes.append("Company name not found in document; name check skipped")

    display_name = user_company_name or document_name
    market_data = None
    if stock_price is None and market_data_service is not None and display_name:
        market = market_data_service.fetch(display_name)
        if market is not None:
            market_data = market.to_dict()
            stock_price = market.current_price
    if stock_price is not None:
        metrics["stock_price"] = kpi_normalizer.normalize_metric_value(stock_price)

    ratios = calculator.validate_ratios(calculator.calculate_all_ratios(metrics))
    confidence = calculator.calculate_confidence_score(metrics, ratios)
    notes.extend(calculator.explain_missing(metrics, ratios))
    log_step(output_dir, "ratios", {"ratios": ratios, "confidence": confidence, "notes": notes})

    evidence = {
        key[: -len("_evidence")]: {
            "snippet": value,
            "confidence": extras.get(key[: -len("_evidence")] + "_confidence"),
        }
        for key, value in extras.items()
        if key.endswith("_evidence")
    }

    return {
        "company_name": display_name,
        "document_company_name": document_name,
        "period": extras.get("period") or context.period,
        "context": asdict(context),
        "metrics": metrics,
        "ratios": ratios,
        "confidence": confidence,
        "notes": notes,
        "name_match": name_match,
        "accepted": accepted,
        "evidence": evidence,
        "market_data": market_data,
    }


def compare_documents(
    documents: Sequence[Mapping[str, Any]],
    extractor: Optional[MetricsExtractor] = None,
    llms: Sequence[Any] = (),
    market_data_service: Optional[MarketDataService] = None,
    name_match_threshold: float = 0.5,
    output_dir: Optional[Path] = None,
    currency_factors: Optional[Mapping[str, float]] = None,
    calculator: Optional[RatioCalculator] = None,
) -> Dict[str, Any]:
    if not MIN_COMPANIES <= len(documents) <= MAX_COMPANIES:
        raise ValueError(f"compare between {MIN_COMPANIES} and {MAX_COMPANIES} documents, got {len(documents)}")

    def run(index: int, document: Mapping[str, Any]) -> Dict[str, Any]:
        return analyze_document(
            document.get("text", ""),
            extractor=extractor,
            company_name=document.get("document_company_name") or "",
            user_company_name=document.get("company_name"),
            stock_price=document.get("stock_price"),
            market_data_service=market_data_service,
            name_match_threshold=name_match_threshold,
            output_dir=Path(output_dir) / f"company_{index + 1}" if output_dir is not None else None,
            currency_factors=currency_factors,
            calculator=calculator,
        )

    with ThreadPoolExecutor(max_workers=len(documents)) as executor:
        futures = [executor.submit(run, i, doc) for i, doc in enumerate(documents)]
        companies = [fut.result() for fut in futures]

    accepted = [c for c in companies if c["accepted"]]
    rejected = [c["company_name"] for c in companies if not c["accepted"]]
    if rejected:
        logger.warning("excluded from comparison after name check: %s", rejected)
    insights = generate_comparison_insights(
        [{"company_name": c["company_name"], **c["metrics"], **c["ratios"]} for c in accepted],
        llms,
    )
    log_step(output_dir, "insights", insights)
    return {"companies": companies, "insights": insights}
