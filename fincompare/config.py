import os
from dataclasses import dataclass
from typing import Dict
from dotenv import load_dotenv


@dataclass
class AppConfig:
    llm_provider: str
    llm_model_name: str
    llm_api_key: str
    llm_base_url: str
    llm_timeout_seconds: int
    llm_max_retries: int
    gemini_api_key: str
    gemini_model_name: str
    gemini_base_url: str
    tavily_api_key: str
    cache_ttl_minutes: float
    cache_max_size: int
    cache_sweep_interval_seconds: float
    document_ttl_minutes: float
    document_store_max_size: int
    name_match_threshold: float
    inr_per_usd: float
    usd_per_eur: float
    usd_per_gbp: float
    quick_ratio_factor: float
    debug: bool

    def currency_factors(self) -> Dict[str, float]:
        # Static approximations; refresh the env values when rates drift.
        return {
            "USD": 1.0,
            "INR": 1.0 / self.inr_per_usd,
            "EUR": self.usd_per_eur,
            "GBP": self.usd_per_gbp,
            "unknown": 1.0,
        }


def load_config() -> AppConfig:
    load_dotenv()
    provider = os.getenv("LLM_PROVIDER", "openai").strip().lower()
    if provider not in {"openai", "gemini"}:
        provider = "openai"

    threshold = _float_env("NAME_MATCH_THRESHOLD", 0.5)
    threshold = max(0.0, min(threshold, 1.0))

    cache_max_size = max(1, _int_env("CACHE_MAX_SIZE", 1000))
    document_store_max_size = max(1, _int_env("DOCUMENT_STORE_MAX_SIZE", 100))
    cache_ttl_minutes = _float_env("CACHE_TTL_MINUTES", 15.0)
    if cache_ttl_minutes <= 0:
        cache_ttl_minutes = 15.0
    document_ttl_minutes = _float_env("DOCUMENT_TTL_MINUTES", 60.0)
    if document_ttl_minutes <= 0:
        document_ttl_minutes = 60.0
    inr_per_usd = _float_env("FX_INR_PER_USD", 83.0)
    if inr_per_usd <= 0:
        inr_per_usd = 83.0

    return AppConfig(
        llm_provider=provider,
        llm_model_name=os.getenv("LLM_MODEL_NAME", "gpt-4o-mini"),
        llm_api_key=os.getenv("LLM_API_KEY", ""),
        llm_base_url=os.getenv("LLM_BASE_URL", "https://api.openai.com"),
        llm_timeout_seconds=_int_env("LLM_TIMEOUT_SECONDS", 90),
        llm_max_retries=_int_env("LLM_MAX_RETRIES", 2),
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model_name=os.getenv("GEMINI_MODEL_NAME", "gemini-2.5-flash"),
        gemini_base_url=os.getenv(
            "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"
        ),
        tavily_api_key=os.getenv("TAVILY_API_KEY", ""),
        cache_ttl_minutes=cache_ttl_minutes,
        cache_max_size=cache_max_size,
        cache_sweep_interval_seconds=_float_env("CACHE_SWEEP_INTERVAL_SECONDS", 300.0),
        document_ttl_minutes=document_ttl_minutes,
        document_store_max_size=document_store_max_size,
        name_match_threshold=threshold,
        inr_per_usd=inr_per_usd,
        usd_per_eur=_float_env("FX_USD_PER_EUR", 1.1),
        usd_per_gbp=_float_env("FX_USD_PER_GBP", 1.25),
        quick_ratio_factor=_float_env("QUICK_RATIO_FACTOR", 0.7),
        debug=os.getenv("DEBUG", "false").lower() == "true",
    )


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default
