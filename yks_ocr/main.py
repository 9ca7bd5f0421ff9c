"""
YKS OCR Service - FastAPI application.

Accepts an image of a YKS exam question, extracts its text with Tesseract
(Turkish), corrects the text and tags it with YKS topics via Gemini.

Endpoints:
    POST /ocr          - upload an image (form field `image`) and process it
    GET  /health       - liveness check
    GET  /             - service info
    POST /test-gemini  - Gemini connectivity check

Run:
    uvicorn yks_ocr.main:app --host 0.0.0.0 --port 3000
"""

import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from yks_ocr.config import settings
from yks_ocr.errors import RefinementError
from yks_ocr.pipeline import OcrPipeline, UnicodeJSONResponse, render_outcome
from yks_ocr.schemas import ErrorResponse, HealthResponse, OCRSuccessResponse
from yks_ocr.services.refiner import TopicRefiner
from yks_ocr.services.upload_gate import UPLOAD_FIELD

# Logger setup
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [YKS-OCR] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

ENDPOINTS = ["/ocr", "/health", "/test-gemini"]

# FastAPI application
app = FastAPI(
    title="YKS OCR Service",
    description="Text extraction and YKS topic tagging for exam question images",
    version="1.0.0",
    default_response_class=UnicodeJSONResponse,
)


@lru_cache(maxsize=1)
def get_refiner() -> TopicRefiner:
    return TopicRefiner.from_settings()


@lru_cache(maxsize=1)
def get_pipeline() -> OcrPipeline:
    return OcrPipeline(refiner=get_refiner())


@app.exception_handler(RequestValidationError)
async def handle_validation_error(
    request: Request, exc: RequestValidationError
) -> UnicodeJSONResponse:
    """Malformed form data is a client fault: 400 in the upload error shape."""
    first_error = exc.errors()[0] if exc.errors() else {}
    logger.warning(f"Request validation failed on {request.url.path}: {first_error}")

    return UnicodeJSONResponse(
        status_code=400,
        content=ErrorResponse(
            error="File upload failed",
            details=first_error.get("msg", "Invalid request"),
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(
    request: Request, exc: StarletteHTTPException
) -> UnicodeJSONResponse:
    """
    Renders framework HTTP errors as {error, details?}.

    A 400 here comes from a multipart body that could not be parsed.
    """
    if exc.status_code == 400:
        logger.warning(f"Unparsable request body on {request.url.path}: {exc.detail}")
        body = ErrorResponse(error="File upload failed", details=str(exc.detail))
    else:
        body = ErrorResponse(error=str(exc.detail))

    return UnicodeJSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(exclude_none=True),
        headers=getattr(exc, "headers", None),
    )


@app.post(
    "/ocr",
    response_model=OCRSuccessResponse,
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse, "description": "Upload rejected"},
        422: {"model": ErrorResponse, "description": "No text detected"},
        500: {"model": ErrorResponse, "description": "OCR processing failed"},
    },
)
async def process_image(
    image: Optional[UploadFile] = File(
        default=None,
        description="Image of the question (jpeg, png, gif, bmp, webp; up to 10 MB)",
    ),
    pipeline: OcrPipeline = Depends(get_pipeline),
) -> UnicodeJSONResponse:
    """
    Extracts and refines the text of an uploaded question image.

    Pipeline:
        1. Upload gate: presence, content type, size; staging
        2. OCR: Tesseract, Turkish language pack
        3. Refinement: Gemini correction + YKS topics (texts of 10+ chars)

    Returns:
        200 with ocr_result/raw_text (warning set if Gemini failed),
        400 on a rejected upload, 422 if no text was found, 500 otherwise
    """
    filename = image.filename if image is not None else None
    logger.info(f"Received /ocr request: {UPLOAD_FIELD}={filename or 'missing'}")

    outcome = await pipeline.handle(image)
    return render_outcome(outcome)


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    timestamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return HealthResponse(status="OK", timestamp=timestamp.replace("+00:00", "Z"))


@app.get("/")
async def service_info() -> dict:
    return {
        "message": "OCR Server is running",
        "endpoints": ENDPOINTS,
    }


@app.post("/test-gemini")
async def test_gemini(refiner: TopicRefiner = Depends(get_refiner)) -> UnicodeJSONResponse:
    """
    Checks that the Gemini API answers with schema-constrained JSON.

    Returns:
        200 with the parsed answer, 500 if the call or the parsing failed
    """
    logger.info("Testing Gemini API connection")

    try:
        answer, raw = await refiner.ping()
    except RefinementError as e:
        logger.error(f"Gemini test error: {e.message}")
        return UnicodeJSONResponse(
            status_code=500,
            content={
                "error": "Gemini API test failed",
                "details": e.message,
                "success": False,
            },
        )

    return UnicodeJSONResponse(
        content={
            "success": True,
            "gemini_response": answer,
            "message": "Gemini API is working correctly!",
            "raw_response": raw,
        }
    )


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting YKS OCR Service on port {settings.port}")
    logger.info(f"Available endpoints: {', '.join(ENDPOINTS)}")

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=settings.port,
        log_level="info",
    )
