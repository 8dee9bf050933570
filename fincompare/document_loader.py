import io
import logging
import re
from pathlib import Path
from typing import List, Optional

from bs4 import BeautifulSoup
from pypdf import PdfReader
from pypdf.errors import PyPdfError


logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {"application/pdf", "text/html", "text/plain"}
ALLOWED_EXTENSIONS = (".pdf", ".html", ".htm", ".txt")

COMPANY_SUFFIXES = ("Inc", "INC", "Corp", "Corporation", "Ltd", "Limited", "LIMITED", "LLC", "PLC")
COMPANY_NAME_PATTERN = re.compile(
    r"\b[A-Z][A-Za-z&.,' ]{1,80}?\s(?:Inc\.?|Corporation|Corp\.?|Limited|Ltd\.?|LLC|PLC)(?!\w)"
)


def validate_file_type(filename: str, content_type: Optional[str] = None) -> bool:
    if content_type and content_type.split(";")[0].strip().lower() in ALLOWED_CONTENT_TYPES:
        return True
    return (filename or "").lower().endswith(ALLOWED_EXTENSIONS)


def get_file_type(filename: str, content_type: Optional[str] = None) -> str:
    lowered = (filename or "").lower()
    mime = (content_type or "").split(";")[0].strip().lower()
    if mime == "application/pdf" or lowered.endswith(".pdf"):
        return "pdf"
    if mime == "text/html" or lowered.endswith((".html", ".htm")):
        return "html"
    return "text"


def extract_document_text(filename: str, content: bytes, content_type: Optional[str] = None) -> str:
    if not isinstance(content, (bytes, bytearray)):
        raise TypeError(f"content must be bytes, got {type(content).__name__}")
    if not validate_file_type(filename, content_type):
        raise ValueError(f"Unsupported file type: {Path(filename or '').suffix or content_type}")
    file_type = get_file_type(filename, content_type)
    if file_type == "pdf":
        text = _extract_pdf_text_from_bytes(bytes(content))
    elif file_type == "html":
        text = _extract_html_text_from_bytes(bytes(content))
    else:
        text = bytes(content).decode("utf-8", errors="replace")
    logger.debug("extracted %d chars from %s (%s)", len(text), filename, file_type)
    return text


def _extract_pdf_text_from_bytes(content: bytes) -> str:
    try:
        reader = PdfReader(io.BytesIO(content))
        parts: List[str] = []
        for page in reader.pages:
            text = (page.extract_text() or "").replace("\u0000", " ").strip()
            if text:
                parts.append(text)
    except (PyPdfError, ValueError, OSError) as exc:
        raise ValueError(f"PDF parsing failed: {exc}") from exc
    return "\n".join(parts)


def _extract_html_text_from_bytes(content: bytes) -> str:
    soup = BeautifulSoup(content.decode("utf-8", errors="replace"), "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return re.sub(r"\s+", " ", soup.get_text(" ")).strip()


def extract_company_name(text: str) -> str:
    if not text:
        return ""
    head = text[:8000]
    lines = [line.strip() for line in head.splitlines() if line.strip()]
    for idx, line in enumerate(lines):
        if "exact name of registrant" in line.lower():
            for back in range(idx - 1, max(idx - 5, -1), -1):
                if _is_company_candidate(lines[back]):
                    return lines[back]
    for idx, line in enumerate(lines):
        if "form 10-k" in line.lower() or "form 10-q" in line.lower():
            for forward in range(idx + 1, min(idx + 6, len(lines))):
                if _is_company_candidate(lines[forward]):
                    return lines[forward]
    for line in lines[:40]:
        match = COMPANY_NAME_PATTERN.search(line)
        if match:
            return match.group(0).strip()
    return ""


def _is_company_candidate(value: str) -> bool:
    if not value or len(value) < 2 or len(value) > 80:
        return False
    lowered = value.lower()
    if "commission" in lowered or "file number" in lowered or "form 10-" in lowered:
        return False
    return any(suffix in value for suffix in COMPANY_SUFFIXES)
