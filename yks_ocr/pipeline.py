"""
Request pipeline: upload gate -> OCR -> refinement -> response.

OcrPipeline.handle() turns one upload into a PipelineOutcome;
render_outcome() is the only place where outcomes become HTTP status
codes and JSON bodies.

Refinement failures never fail the request (OCR text alone is a valid
answer); OCR failures always do.
"""

import json
import logging
import time
from typing import Optional

from fastapi import UploadFile
from fastapi.responses import JSONResponse

from yks_ocr.config import settings
from yks_ocr.errors import PipelineError
from yks_ocr.schemas import (
    ErrorResponse,
    NoTextDetected,
    OCRSuccessResponse,
    PipelineOutcome,
    Success,
    UnexpectedFailure,
    ValidationRejected,
)
from yks_ocr.services import ocr_engine, upload_gate
from yks_ocr.services.janitor import RequestResources
from yks_ocr.services.ocr_engine import WorkerFactory
from yks_ocr.services.refiner import TopicRefiner

logger = logging.getLogger(__name__)

OCR_FAILED = "OCR processing failed"

STATUS_BY_OUTCOME = {
    Success: 200,
    ValidationRejected: 400,
    NoTextDetected: 422,
    UnexpectedFailure: 500,
}


class UnicodeJSONResponse(JSONResponse):
    """JSON response that keeps Turkish characters readable (no \\uXXXX escaping)."""

    def render(self, content) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


class OcrPipeline:
    """
    The single request lifecycle of the service.

    Attributes:
        refiner: Gemini refinement stage
        worker_factory: creates OCR workers (ocr_engine.create_worker)
        staging_dir: where accepted uploads are written
        max_file_size_bytes: upload size ceiling
    """

    def __init__(
        self,
        refiner: TopicRefiner,
        worker_factory: Optional[WorkerFactory] = None,
        staging_dir: Optional[str] = None,
        max_file_size_bytes: Optional[int] = None,
    ):
        self.refiner = refiner
        self.worker_factory = worker_factory or ocr_engine.create_worker
        self.staging_dir = staging_dir or settings.upload_dir
        self.max_file_size_bytes = max_file_size_bytes or settings.max_file_size_bytes

    async def handle(self, upload: Optional[UploadFile]) -> PipelineOutcome:
        """
        Processes one upload.

        All resources are owned by a RequestResources scope: by the time
        an outcome is produced, the worker is terminated and the staged
        file is gone, whichever branch was taken.

        Args:
            upload: the `image` form field, None if absent

        Returns:
            PipelineOutcome: Success, ValidationRejected, NoTextDetected
            or UnexpectedFailure
        """
        start = time.perf_counter()

        try:
            async with RequestResources() as resources:
                image = await upload_gate.accept(
                    upload,
                    resources,
                    staging_dir=self.staging_dir,
                    max_size_bytes=self.max_file_size_bytes,
                )
                extracted = await ocr_engine.extract(
                    image, resources, worker_factory=self.worker_factory
                )
                refinement = await self.refiner.refine(extracted.raw)

        except PipelineError as e:
            return outcome_for_error(e)

        except Exception as e:
            logger.exception(f"OCR endpoint error: {e}")
            return UnexpectedFailure(reason=str(e) or type(e).__name__)

        duration = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"Processing completed in {duration}ms"
            + (f" (warning: {refinement.warning})" if refinement.warning else "")
        )

        return Success(
            result=refinement.result,
            raw_text=extracted.raw,
            warning=refinement.warning,
        )


def outcome_for_error(error: PipelineError) -> PipelineOutcome:
    """
    Maps a pipeline error to an outcome by its category.

    client_fault and no_text end the request early; anything else
    (server_fault, or a degraded error that escaped the refinement
    stage) is an unexpected failure.
    """
    if error.category == "client_fault":
        details = getattr(error, "details", None)
        logger.warning(f"Upload rejected: {error.message} {details or ''}".rstrip())
        return ValidationRejected(reason=error.message, details=details)

    if error.category == "no_text":
        return NoTextDetected(details=error.message)

    logger.error(f"OCR endpoint error ({error.category}): {error.message}", exc_info=error)
    return UnexpectedFailure(reason=error.message)


def render_outcome(outcome: PipelineOutcome) -> UnicodeJSONResponse:
    """
    Maps a pipeline outcome to the external response.

    Returns:
        UnicodeJSONResponse: status from STATUS_BY_OUTCOME and the body
        shape of that status
    """
    status_code = STATUS_BY_OUTCOME[type(outcome)]

    if isinstance(outcome, Success):
        body = OCRSuccessResponse(
            ocr_result=outcome.result,
            raw_text=outcome.raw_text,
            warning=outcome.warning,
        )
    elif isinstance(outcome, ValidationRejected):
        body = ErrorResponse(error=outcome.reason, details=outcome.details)
    elif isinstance(outcome, NoTextDetected):
        body = ErrorResponse(error=OCR_FAILED, details=outcome.details, success=False)
    else:
        body = ErrorResponse(error=OCR_FAILED, details=outcome.reason, success=False)

    return UnicodeJSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
    )
