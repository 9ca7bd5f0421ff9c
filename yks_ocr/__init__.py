"""
YKS OCR Service - text extraction and YKS topic tagging for question images.

One request pipeline in one FastAPI application:
    - upload gate (validation + staging)
    - OCR stage (Tesseract, Turkish language pack)
    - refinement stage (Gemini correction + YKS topics, graceful fallback)
"""

from yks_ocr.config import settings
from yks_ocr.schemas import OCRSuccessResponse, StructuredResult

__all__ = [
    "settings",
    "OCRSuccessResponse",
    "StructuredResult",
]
