"""
Data schemas of the YKS OCR service.

Includes:
    - Pydantic models for the API (structured OCR result, responses)
    - Internal dataclasses for the request pipeline
    - Pipeline outcome variants, mapped to HTTP responses in one place
"""

from dataclasses import dataclass
from typing import Optional, Union

from pydantic import BaseModel, Field


# =============================================================================
# Pydantic models for the API
# =============================================================================


class StructuredResult(BaseModel):
    """
    Refined OCR text with its YKS topic tags.

    Built either from the Gemini answer or by the fallback constructor,
    which copies the raw OCR text verbatim.

    Attributes:
        corrected_text: OCR text with spelling/logic errors fixed
        yks_topics: topic labels, e.g. "TYT-Biyoloji-Bitkiler"
        note: explanation when the text was not refined
    """

    corrected_text: str
    yks_topics: list[str]
    note: Optional[str] = None

    @classmethod
    def fallback(cls, raw_text: str, note: str) -> "StructuredResult":
        return cls(corrected_text=raw_text, yks_topics=[], note=note)


class OCRSuccessResponse(BaseModel):
    """
    Response of POST /ocr on success (possibly degraded).

    Attributes:
        ocr_result: refined text and topics
        raw_text: trimmed Tesseract output
        success: always True
        warning: set when AI refinement failed and raw text was returned
    """

    ocr_result: StructuredResult
    raw_text: str
    success: bool = True
    warning: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None
    success: Optional[bool] = None


class HealthResponse(BaseModel):
    status: str = Field(default="OK", description="Always OK while the process serves requests")
    timestamp: str


# =============================================================================
# Internal dataclasses for the pipeline
# =============================================================================


@dataclass
class UploadedImage:
    """
    Upload accepted by the gate and written to the staging directory.

    Owned by a single request; deleted no later than the end of it.

    Attributes:
        storage_path: absolute path of the staged file
        mime_type: declared content type (one of the allowed image types)
        size_bytes: size of the staged file
        original_filename: client-side file name, for logging
    """

    storage_path: str
    mime_type: str
    size_bytes: int
    original_filename: str = ""


@dataclass
class ExtractedText:
    """
    Result of the OCR stage.

    Attributes:
        raw: trimmed recognised text, never empty
        confidence: mean word confidence reported by Tesseract (0-100)
    """

    raw: str
    confidence: float = 0.0


@dataclass
class Refinement:
    """Refinement stage output: the result plus a warning for degraded runs."""

    result: StructuredResult
    warning: Optional[str] = None


# =============================================================================
# Pipeline outcomes
# =============================================================================


@dataclass
class Success:
    result: StructuredResult
    raw_text: str
    warning: Optional[str] = None


@dataclass
class ValidationRejected:
    reason: str
    details: Optional[str] = None


@dataclass
class NoTextDetected:
    details: str = "No text detected in the image"


@dataclass
class UnexpectedFailure:
    reason: str


PipelineOutcome = Union[Success, ValidationRejected, NoTextDetected, UnexpectedFailure]
