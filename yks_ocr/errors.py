"""
Pipeline error taxonomy.

Categories:
    - client_fault: bad, missing or oversize upload (400)
    - no_text: valid image, OCR found nothing usable (422)
    - server_fault: staged file vanished, OCR engine failed (500)
    - degraded: AI refinement failed; never leaves the refinement stage
"""

from typing import Optional


class PipelineError(Exception):
    """
    Base error of the OCR pipeline.

    Attributes:
        message: human readable reason, shown to the client as `details`
        category: error category (see module docstring); pipeline.outcome_for_error
            picks the outcome from it
    """

    category = "server_fault"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UploadValidationError(PipelineError):
    """Upload rejected before any staging write."""

    category = "client_fault"

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.details = details


class NoTextDetectedError(PipelineError):
    category = "no_text"

    def __init__(self, message: str = "No text detected in the image"):
        super().__init__(message)


class OcrEngineError(PipelineError):
    """Tesseract could not be started or failed during recognition."""


class StagedFileMissingError(PipelineError):
    """The staged upload disappeared before recognition."""

    def __init__(self, path: str):
        super().__init__(f"Uploaded file not found on server: {path}")
        self.path = path


class RefinementError(PipelineError):
    category = "degraded"


class RefinementUnavailableError(RefinementError):
    """Gemini call failed or did not answer in time."""


class RefinementParseError(RefinementError):
    """Gemini answered, but the payload does not match the output schema."""
