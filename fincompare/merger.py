import logging
from typing import Any, Dict, List, Mapping, Optional

from .kpi_normalizer import kpi_normalizer
from .number_parser import ExtractedNumber


logger = logging.getLogger(__name__)


def merge_extraction_results(
    heuristic_candidates: Mapping[str, List[ExtractedNumber]],
    ai_result: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    """AI values win; the best heuristic candidate only fills null or zero answers."""
    if ai_result is not None and not isinstance(ai_result, Mapping):
        raise TypeError(f"ai_result must be a mapping, got {type(ai_result).__name__}")
    merged: Dict[str, Any] = dict(ai_result or {})

    for metric, candidates in heuristic_candidates.items():
        if not candidates:
            continue
        if _has_value(merged.get(metric)):
            continue
        best = max(candidates, key=lambda c: c.confidence)
        merged[metric] = best.value
        merged[f"{metric}_confidence"] = best.confidence
        merged[f"{metric}_evidence"] = best.evidence_snippet
        logger.debug(
            "filled %s from heuristic candidate %s (confidence %.2f)",
            metric,
            best.value,
            best.confidence,
        )
    return merged


def _has_value(value: Any) -> bool:
    # "0.00", "$0" and "0 billion" are zero answers too.
    return bool(kpi_normalizer.normalize_metric_value(value))
