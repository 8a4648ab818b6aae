"""Extraction client for statement documents.

The extraction model is an external collaborator: the pipeline only needs
something that turns a source document into raw response text. This module
defines that seam and ships an OpenAI chat-completions implementation.

Exposes:
- SourceDocument: the payload sent to the model (text and/or binary)
- load_source(path): read a file from disk as a SourceDocument
- ExtractionClient: protocol with extract(source) -> str
- OpenAIExtractionClient: GPT-4o implementation (PDF pages rendered to PNG)
- extract_document(client, source) -> (ValidationResult, raw_text)
"""

import base64
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Tuple, Union

import fitz
import openai

from core.config import Settings, get_settings
from core.observability.logging import get_logger
from extraction.prompts import EXTRACTION_SYSTEM_PROMPT, build_user_prompt
from extraction.validator import ValidationResult, validate_extraction


logger = get_logger(__name__)

IMAGE_MIME_TYPES = {"image/png", "image/jpeg", "image/webp", "image/gif"}


# =============================================================================
# Source Document
# =============================================================================

@dataclass(frozen=True)
class SourceDocument:
    """One uploaded document as sent to the extraction model.

    Attributes:
        filename: Original upload filename
        file_type: Upload type (pdf, csv, text, image, ...)
        text_content: Text extracted from the upload (CSV, text, OFX...)
        binary_content: Raw bytes for PDFs and images
        mime_type: MIME type of binary_content
    """
    filename: str
    file_type: str
    text_content: Optional[str] = None
    binary_content: Optional[bytes] = None
    mime_type: Optional[str] = None

    @property
    def is_binary(self) -> bool:
        return self.binary_content is not None


BINARY_SUFFIXES = {
    ".pdf": ("pdf", "application/pdf"),
    ".png": ("image", "image/png"),
    ".jpg": ("image", "image/jpeg"),
    ".jpeg": ("image", "image/jpeg"),
    ".webp": ("image", "image/webp"),
}


def load_source(path: Union[str, Path]) -> SourceDocument:
    """Read a file from disk as a source document.

    PDFs and images are sent as binary; everything else is read as text.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix in BINARY_SUFFIXES:
        file_type, mime_type = BINARY_SUFFIXES[suffix]
        return SourceDocument(
            filename=path.name,
            file_type=file_type,
            binary_content=path.read_bytes(),
            mime_type=mime_type,
        )
    return SourceDocument(
        filename=path.name,
        file_type=suffix.lstrip(".") or "text",
        text_content=path.read_text(encoding="utf-8", errors="replace"),
    )


class ExtractionClient(Protocol):
    """Anything that can turn a source document into raw model output."""

    def extract(self, source: SourceDocument) -> str:
        ...


# =============================================================================
# Utilities
# =============================================================================

def page_to_png_b64(page: fitz.Page, zoom: float = 2.0) -> str:
    """Convert a PDF page to base64-encoded PNG for the vision API."""
    mat = fitz.Matrix(zoom, zoom)
    pix = page.get_pixmap(matrix=mat, alpha=False)
    return base64.b64encode(pix.tobytes("png")).decode("ascii")


def source_images_b64(source: SourceDocument, max_pages: int = 20) -> List[Tuple[str, str]]:
    """Render the binary part of a source document as (mime, base64) images."""
    if source.binary_content is None:
        return []

    if source.mime_type in IMAGE_MIME_TYPES:
        return [(source.mime_type, base64.b64encode(source.binary_content).decode("ascii"))]

    if source.mime_type == "application/pdf" or source.file_type == "pdf":
        with fitz.open(stream=source.binary_content, filetype="pdf") as doc:
            page_count = min(doc.page_count, max_pages)
            if doc.page_count > max_pages:
                logger.warning(
                    f"PDF has {doc.page_count} pages, sending first {max_pages}",
                    extra_fields={"filename": source.filename},
                )
            return [("image/png", page_to_png_b64(doc.load_page(i))) for i in range(page_count)]

    raise ValueError(f"Unsupported binary content type: {source.mime_type or source.file_type}")


# =============================================================================
# OpenAI Implementation
# =============================================================================

class OpenAIExtractionClient:
    """Extraction client backed by OpenAI chat completions.

    Rate limits and timeouts are retried a bounded number of times inside
    one ``extract`` call; any other API error propagates to the caller.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_attempts: int = 3,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        api_key = api_key or settings.openai_api_key
        if not api_key:
            raise ValueError("OPENAI_API_KEY is not configured")

        self.model = model or settings.extraction_model
        self.max_attempts = max_attempts
        self._client = openai.OpenAI(
            api_key=api_key,
            timeout=timeout or settings.extraction_timeout_seconds,
        )

    def _build_messages(self, source: SourceDocument) -> list:
        content = [{
            "type": "text",
            "text": build_user_prompt(source.filename, source.file_type, source.text_content),
        }]
        for mime, img in source_images_b64(source):
            content.append({
                "type": "image_url",
                "image_url": {"url": f"data:{mime};base64,{img}", "detail": "high"},
            })
        return [
            {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ]

    def extract(self, source: SourceDocument) -> str:
        messages = self._build_messages(source)
        logger.info(
            f"Sending {source.filename} to {self.model}",
            extra_fields={"file_type": source.file_type, "parts": len(messages[1]["content"])},
        )

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self._client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=0,
                    max_tokens=16000,
                    response_format={"type": "json_object"},
                )
                return response.choices[0].message.content or ""
            except openai.RateLimitError:
                if attempt == self.max_attempts:
                    raise
                logger.warning(f"Rate limited, waiting 60s (attempt {attempt}/{self.max_attempts})")
                time.sleep(60)
            except openai.APITimeoutError:
                if attempt == self.max_attempts:
                    raise
                logger.warning(f"Timeout, retrying (attempt {attempt}/{self.max_attempts})")
                time.sleep(10)

        raise RuntimeError(f"Extraction failed after {self.max_attempts} attempts")


# =============================================================================
# High-level Function
# =============================================================================

def extract_document(
    client: ExtractionClient,
    source: SourceDocument,
) -> Tuple[ValidationResult, str]:
    """Call the extraction model once and validate its response.

    Returns:
        (validation result, raw response text)
    """
    start = time.monotonic()
    raw_text = client.extract(source)
    logger.info(
        "Extraction response received",
        extra_fields={
            "filename": source.filename,
            "chars": len(raw_text),
            "duration_ms": round((time.monotonic() - start) * 1000, 1),
        },
    )
    return validate_extraction(raw_text), raw_text
