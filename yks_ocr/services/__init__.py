"""
Pipeline stages.

Modules:
    - janitor: per-request tracking and release of the staged file and OCR worker
    - upload_gate: validation and staging of the uploaded image
    - ocr_engine: Tesseract worker handle and the OCR stage
    - refiner: Gemini correction and YKS topic tagging
"""

from yks_ocr.services.janitor import RequestResources
from yks_ocr.services.ocr_engine import OcrWorker, create_worker, extract
from yks_ocr.services.refiner import TopicRefiner
from yks_ocr.services.upload_gate import accept

__all__ = [
    "RequestResources",
    "OcrWorker",
    "create_worker",
    "extract",
    "TopicRefiner",
    "accept",
]
