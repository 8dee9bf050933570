import logging
import math
from typing import Any, Dict, List, Mapping, Optional


logger = logging.getLogger(__name__)

# Inventory is not tracked separately, so quick assets are a fixed share of current assets.
QUICK_RATIO_FACTOR = 0.7

RATIO_BOUNDS = {
    "gross_margin": (-100, 100),
    "operating_margin": (-100, 100),
    "profit_margin": (-100, 100),
    "roe": (-100, 200),
    "roa": (-100, 100),
    "roic": (-100, 100),
    "current_ratio": (0, 50),
    "quick_ratio": (0, 50),
    "cash_ratio": (0, 50),
    "debt_to_equity": (0, 50),
    "debt_to_assets": (0, 100),
    "eps": (-1000, 1000),
    "book_value_per_share": (-1000, 10000),
    "pe_ratio": (-1000, 1000),
    "pb_ratio": (-100, 100),
}

RATIO_INPUTS = {
    "gross_margin": ("gross_profit", "revenue"),
    "operating_margin": ("operating_income", "revenue"),
    "profit_margin": ("net_income", "revenue"),
    "roe": ("net_income", "shareholders_equity"),
    "roa": ("net_income", "total_assets"),
    "roic": ("net_income", "total_debt", "shareholders_equity"),
    "current_ratio": ("current_assets", "current_liabilities"),
    "quick_ratio": ("current_assets", "current_liabilities"),
    "cash_ratio": ("cash_equivalents", "current_liabilities"),
    "debt_to_equity": ("total_debt", "shareholders_equity"),
    "debt_to_assets": ("total_debt", "total_assets"),
    "eps": ("net_income", "shares_outstanding"),
    "book_value_per_share": ("shareholders_equity", "shares_outstanding"),
    "pe_ratio": ("stock_price", "net_income", "shares_outstanding"),
    "pb_ratio": ("stock_price", "shareholders_equity", "shares_outstanding"),
}

KEY_METRIC_BONUSES = (
    (("revenue", "net_income"), 0.2),
    (("total_assets", "shareholders_equity"), 0.15),
    (("current_assets", "current_liabilities"), 0.1),
)


class RatioCalculator:
    def __init__(
        self,
        quick_ratio_factor: float = QUICK_RATIO_FACTOR,
        bounds: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.quick_ratio_factor = quick_ratio_factor
        self.bounds = dict(bounds) if bounds is not None else dict(RATIO_BOUNDS)

    @staticmethod
    def _value(inputs: Mapping[str, Any], key: str) -> Optional[float]:
        value = inputs.get(key)
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"metric {key!r} must be a number or None, got {type(value).__name__}")
        if not math.isfinite(value) or value == 0:
            return None
        return float(value)

    @staticmethod
    def _percent(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
        if numerator is None or denominator is None:
            return None
        return _round2(numerator / denominator * 100)

    @staticmethod
    def _multiple(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
        if numerator is None or denominator is None:
            return None
        return _round2(numerator / denominator)

    def calculate_profitability_ratios(self, inputs: Mapping[str, Any]) -> Dict[str, Optional[float]]:
        revenue = self._value(inputs, "revenue")
        net_income = self._value(inputs, "net_income")
        equity = self._value(inputs, "shareholders_equity")
        debt = self._value(inputs, "total_debt")
        invested_capital = None
        if debt is not None and equity is not None and debt + equity != 0:
            invested_capital = debt + equity
        return {
            "gross_margin": self._percent(self._value(inputs, "gross_profit"), revenue),
            "operating_margin": self._percent(self._value(inputs, "operating_income"), revenue),
            "profit_margin": self._percent(net_income, revenue),
            "roe": self._percent(net_income, equity),
            "roa": self._percent(net_income, self._value(inputs, "total_assets")),
            "roic": self._percent(net_income, invested_capital),
        }

    def calculate_liquidity_ratios(self, inputs: Mapping[str, Any]) -> Dict[str, Optional[float]]:
        current_assets = self._value(inputs, "current_assets")
        current_liabilities = self._value(inputs, "current_liabilities")
        quick_assets = None
        if current_assets is not None:
            quick_assets = current_assets * self.quick_ratio_factor
        return {
            "current_ratio": self._multiple(current_assets, current_liabilities),
            "quick_ratio": self._multiple(quick_assets, current_liabilities),
            "cash_ratio": self._multiple(self._value(inputs, "cash_equivalents"), current_liabilities),
        }

    def calculate_leverage_ratios(self, inputs: Mapping[str, Any]) -> Dict[str, Optional[float]]:
        debt = self._value(inputs, "total_debt")
        return {
            "debt_to_equity": self._multiple(debt, self._value(inputs, "shareholders_equity")),
            "debt_to_assets": self._percent(debt, self._value(inputs, "total_assets")),
        }

    def calculate_per_share_metrics(self, inputs: Mapping[str, Any]) -> Dict[str, Optional[float]]:
        # Billions of dollars over millions of shares: x1000 gives dollars per share.
        shares = self._value(inputs, "shares_outstanding")
        net_income = self._value(inputs, "net_income")
        equity = self._value(inputs, "shareholders_equity")
        return {
            "eps": self._multiple(None if net_income is None else net_income * 1000, shares),
            "book_value_per_share": self._multiple(None if equity is None else equity * 1000, shares),
        }

    def calculate_valuation_ratios(
        self, inputs: Mapping[str, Any], per_share: Mapping[str, Optional[float]]
    ) -> Dict[str, Optional[float]]:
        price = self._value(inputs, "stock_price")
        eps = per_share.get("eps") or None
        book_value_per_share = per_share.get("book_value_per_share") or None
        return {
            "pe_ratio": self._multiple(price, eps),
            "pb_ratio": self._multiple(price, book_value_per_share),
        }

    def calculate_all_ratios(self, inputs: Mapping[str, Any]) -> Dict[str, Optional[float]]:
        if not isinstance(inputs, Mapping):
            raise TypeError(f"inputs must be a mapping, got {type(inputs).__name__}")
        per_share = self.calculate_per_share_metrics(inputs)
        ratios: Dict[str, Optional[float]] = {}
        ratios.update(self.calculate_profitability_ratios(inputs))
        ratios.update(self.calculate_liquidity_ratios(inputs))
        ratios.update(self.calculate_leverage_ratios(inputs))
        ratios.update(per_share)
        ratios.update(self.calculate_valuation_ratios(inputs, per_share))
        return ratios

    def validate_ratios(self, ratios: Mapping[str, Optional[float]]) -> Dict[str, Optional[float]]:
        if not isinstance(ratios, Mapping):
            raise TypeError(f"ratios must be a mapping, got {type(ratios).__name__}")
        validated: Dict[str, Optional[float]] = dict(ratios)
        for name, value in ratios.items():
            if value is None:
                continue
            if isinstance(value, float) and not math.isfinite(value):
                validated[name] = None
                continue
            bound = self.bounds.get(name)
            if bound and not bound[0] <= value <= bound[1]:
                logger.warning(
                    "Ratio %s value %s outside reasonable bounds [%s, %s], setting to None",
                    name,
                    value,
                    bound[0],
                    bound[1],
                )
                validated[name] = None
        return validated

    def calculate_confidence_score(
        self, inputs: Mapping[str, Any], ratios: Mapping[str, Optional[float]]
    ) -> float:
        total = len(ratios)
        computed = sum(1 for value in ratios.values() if value is not None)
        completeness = computed / total if total else 0.0
        bonus = 0.0
        for keys, weight in KEY_METRIC_BONUSES:
            if all(self._value(inputs, key) is not None for key in keys):
                bonus += weight
        return min(1.0, completeness + bonus)

    def explain_missing(
        self, inputs: Mapping[str, Any], ratios: Mapping[str, Optional[float]]
    ) -> List[str]:
        notes: List[str] = []
        for name, required in RATIO_INPUTS.items():
            if ratios.get(name) is not None:
                continue
            reasons = []
            for key in required:
                raw = inputs.get(key)
                if raw is None:
                    reasons.append(key)
                elif raw == 0:
                    reasons.append(f"{key}=0")
            if reasons:
                notes.append(f"{name} not calculated: missing {', '.join(reasons)}")
            elif name in self.bounds:
                notes.append(f"{name} discarded: outside plausible range")
        return notes


def _round2(value: float) -> Optional[float]:
    if not math.isfinite(value):
        return None
    return round(value * 100) / 100


ratio_calculator = RatioCalculator()
