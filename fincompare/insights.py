import json
from functools import partial
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .extractors import run_with_fallback


INSIGHT_TYPES = ("revenue", "profitability", "growth", "risk", "efficiency")
IMPACTS = ("positive", "negative", "neutral")

INSIGHTS_SYSTEM_PROMPT = (
    "You are a financial analyst expert. Generate actionable insights from financial comparisons."
)

INSIGHTS_SCHEMA = {
    "type": "object",
    "properties": {
        "insights": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "type": {"type": "string", "enum": list(INSIGHT_TYPES)},
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "impact": {"type": "string", "enum": list(IMPACTS)},
                    "companies": {"type": "array", "items": {"type": "string"}},
                },
            },
        },
        "summary": {"type": "string"},
    },
    "required": ["insights", "summary"],
}


def generate_comparison_insights(
    metrics_list: Sequence[Mapping[str, Any]],
    llms: Sequence[Any] = (),
) -> Dict[str, Any]:
    attempts = [
        (f"insights:{getattr(llm, 'provider', 'llm')}", partial(_llm_insights, llm, metrics_list))
        for llm in llms
    ]
    return run_with_fallback(attempts, partial(basic_insights, metrics_list))


def _llm_insights(llm, metrics_list: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    prompt = (
        "Analyze the following financial metrics from multiple companies and generate key "
        "insights for comparison. Focus on revenue differences and market position, "
        "profitability, growth, risk and financial stability, and operational efficiency. "
        "Monetary values are in billions USD, ratios are percentages or multiples.\n\n"
        f"Company Financial Metrics:\n{json.dumps(list(metrics_list), ensure_ascii=False, indent=2, default=str)}"
    )
    result = llm.generate_json(INSIGHTS_SYSTEM_PROMPT, prompt, INSIGHTS_SCHEMA, temperature=0.3)
    insights = result.get("insights") if isinstance(result, dict) else None
    return {
        "insights": [_clean_insight(item) for item in insights or [] if isinstance(item, dict)],
        "summary": str(result.get("summary") or "") if isinstance(result, dict) else "",
        "source": getattr(llm, "provider", "llm"),
    }


def _clean_insight(item: Mapping[str, Any]) -> Dict[str, Any]:
    insight_type = item.get("type") if item.get("type") in INSIGHT_TYPES else "efficiency"
    impact = item.get("impact") if item.get("impact") in IMPACTS else "neutral"
    companies = item.get("companies") or []
    return {
        "type": insight_type,
        "title": str(item.get("title") or ""),
        "description": str(item.get("description") or ""),
        "impact": impact,
        "companies": [str(c) for c in companies] if isinstance(companies, list) else [],
    }


def basic_insights(metrics_list: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    """Arithmetic-only comparison used when no LLM is reachable."""
    insights: List[Dict[str, Any]] = []
    names = [_company(m, i) for i, m in enumerate(metrics_list)]

    revenue_leader = _leader(metrics_list, lambda m: _number(m.get("revenue")))
    if revenue_leader is not None:
        index, value = revenue_leader
        insights.append(
            _insight(
                "revenue",
                "Revenue leader",
                f"{names[index]} reports the highest revenue at {value:.2f}B USD.",
                "positive",
                [names[index]],
            )
        )

    margin_leader = _leader(metrics_list, _profit_margin)
    if margin_leader is not None:
        index, value = margin_leader
        insights.append(
            _insight(
                "profitability",
                "Most profitable",
                f"{names[index]} has the highest profit margin at {value:.2f}%.",
                "positive",
                [names[index]],
            )
        )

    cash_leader = _leader(metrics_list, lambda m: _number(m.get("cash_equivalents")))
    if cash_leader is not None:
        index, value = cash_leader
        insights.append(
            _insight(
                "risk",
                "Strongest cash position",
                f"{names[index]} holds the most cash and equivalents at {value:.2f}B USD.",
                "positive",
                [names[index]],
            )
        )

    leverage_leader = _leader(metrics_list, _debt_to_assets)
    if leverage_leader is not None:
        index, value = leverage_leader
        insights.append(
            _insight(
                "risk",
                "Highest leverage",
                f"{names[index]} carries the most debt relative to assets ({value:.1f}% of total assets).",
                "negative",
                [names[index]],
            )
        )

    summary = f"Compared {len(names)} companies: {', '.join(names)}."
    if revenue_leader is not None:
        summary += f" {names[revenue_leader[0]]} leads on revenue."
    if margin_leader is not None:
        summary += f" {names[margin_leader[0]]} leads on profitability."
    if not insights:
        summary += " Not enough overlapping metrics were extracted for a detailed comparison."
    return {"insights": insights, "summary": summary, "source": "basic"}


def _insight(insight_type: str, title: str, description: str, impact: str, companies: List[str]) -> Dict[str, Any]:
    return {
        "type": insight_type,
        "title": title,
        "description": description,
        "impact": impact,
        "companies": companies,
    }


def _company(metrics: Mapping[str, Any], index: int) -> str:
    name = metrics.get("company_name")
    return str(name) if name else f"Company {index + 1}"


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _profit_margin(metrics: Mapping[str, Any]) -> Optional[float]:
    margin = _number(metrics.get("profit_margin"))
    if margin is not None:
        return margin
    revenue = _number(metrics.get("revenue"))
    net_income = _number(metrics.get("net_income"))
    if revenue and net_income is not None:
        return net_income / revenue * 100
    return None


def _debt_to_assets(metrics: Mapping[str, Any]) -> Optional[float]:
    debt = _number(metrics.get("total_debt"))
    assets = _number(metrics.get("total_assets"))
    if debt is None or not assets:
        return None
    return debt / assets * 100


def _leader(metrics_list: Sequence[Mapping[str, Any]], key) -> Optional[tuple]:
    best = None
    for index, metrics in enumerate(metrics_list):
        value = key(metrics)
        if value is None:
            continue
        if best is None or value > best[1]:
            best = (index, value)
    return best
