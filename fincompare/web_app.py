import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import AppConfig, load_config
from .document_loader import extract_company_name, extract_document_text, validate_file_type
from .extractors import build_default_extractor
from .kpi_normalizer import kpi_normalizer
from .llm_client import build_llm_clients
from .market_data import MarketDataService
from .pipeline import compare_documents
from .ratio_calculator import RatioCalculator
from .tavily_client import TavilyClient
from .web_cache import DocumentStore, WebDataCache


logger = logging.getLogger(__name__)

MIN_DOCUMENT_CHARS = 20


class DocumentRef(BaseModel):
    document_id: str
    company_name: str
    stock_price: Optional[float] = None


class AnalyzeRequest(BaseModel):
    documents: List[DocumentRef] = Field(default_factory=list)


class NameCheckRequest(BaseModel):
    user_name: str
    document_name: str
    threshold: Optional[float] = None


def create_app(
    llm_factory: Optional[Callable[[AppConfig], List[Any]]] = None,
    search_client=None,
    config: Optional[AppConfig] = None,
) -> FastAPI:
    config = config or load_config()
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    llm_factory = llm_factory or build_llm_clients
    if search_client is None and config.tavily_api_key:
        search_client = TavilyClient(config.tavily_api_key)

    web_cache = WebDataCache(
        ttl_minutes=config.cache_ttl_minutes,
        max_size=config.cache_max_size,
        sweep_interval_seconds=config.cache_sweep_interval_seconds,
    )
    documents = DocumentStore(
        ttl_minutes=config.document_ttl_minutes,
        max_size=config.document_store_max_size,
        sweep_interval_seconds=config.cache_sweep_interval_seconds,
    )
    market_data_service = MarketDataService(search_client, web_cache)
    calculator = RatioCalculator(quick_ratio_factor=config.quick_ratio_factor)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        web_cache.close()
        documents.close()

    app = FastAPI(title="FinCompare", lifespan=lifespan)
    app.state.web_cache = web_cache
    app.state.documents = documents
    app.state.config = config

    @app.post("/api/documents")
    async def upload_document(file: UploadFile = File(...)):
        filename = (file.filename or "").strip()
        if not filename:
            raise HTTPException(status_code=400, detail="Missing file name")
        if not validate_file_type(filename, file.content_type):
            raise HTTPException(status_code=400, detail="Only PDF, HTML and plain text files are supported")

        content = await file.read()
        if not content:
            raise HTTPException(status_code=400, detail="Uploaded file is empty")

        try:
            text = extract_document_text(filename, content, file.content_type)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

        if len(text.strip()) < MIN_DOCUMENT_CHARS:
            raise HTTPException(status_code=400, detail="Too little text could be extracted from the document")

        document_id = uuid.uuid4().hex
        company_hint = extract_company_name(text)
        documents.set(
            document_id,
            {"filename": filename, "text": text, "company_name_hint": company_hint},
        )
        return JSONResponse(
            {
                "document_id": document_id,
                "filename": filename,
                "chars": len(text),
                "company_name_hint": company_hint,
            }
        )

    @app.post("/api/analyze")
    def analyze(payload: AnalyzeRequest):
        inputs: List[Dict[str, Any]] = []
        for ref in payload.documents:
            stored = documents.get(ref.document_id)
            if stored is None:
                raise HTTPException(
                    status_code=404,
                    detail=f"Document {ref.document_id} not found or expired, please upload it again",
                )
            inputs.append(
                {
                    "text": stored["text"],
                    "company_name": ref.company_name,
                    "document_company_name": stored.get("company_name_hint") or "",
                    "stock_price": ref.stock_price,
                }
            )

        llms = llm_factory(config)
        try:
            result = compare_documents(
                inputs,
                extractor=build_default_extractor(llms),
                llms=llms,
                market_data_service=market_data_service,
                name_match_threshold=config.name_match_threshold,
                currency_factors=config.currency_factors(),
                calculator=calculator,
            )
        except (ValueError, TypeError) as exc:
            raise HTTPException(status_code=400, detail=str(exc))
        return JSONResponse(result)

    @app.post("/api/validate-name")
    def validate_name(payload: NameCheckRequest):
        threshold = config.name_match_threshold if payload.threshold is None else payload.threshold
        match = kpi_normalizer.validate_company_name_match(payload.user_name, payload.document_name)
        return JSONResponse(
            {
                "is_match": match.is_match,
                "confidence": match.confidence,
                "user_normalized": match.user_normalized,
                "ai_normalized": match.ai_normalized,
                "issues": match.issues,
                "accepted": match.accepted(threshold),
            }
        )

    @app.get("/api/cache/stats")
    def cache_stats():
        return JSONResponse({"web_cache": web_cache.get_stats(), "documents": documents.get_stats()})

    @app.delete("/api/cache")
    def clear_cache():
        web_cache.clear()
        return JSONResponse({"cleared": True})

    return app
