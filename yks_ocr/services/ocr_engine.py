"""
OCR stage: text recognition through Tesseract.

Contains:
    - OcrWorker: a one-process pool running Tesseract, pinned to one language
    - create_worker: starts a worker and checks the language pack is installed
    - extract: the stage itself, Idle -> WorkerAcquiring -> Recognizing ->
      (Success | Failed) -> Released

One recognition attempt per request, no retry. The worker is terminated
and the staged file deleted before extract() returns or raises.
"""

import asyncio
import logging
import os
import time
from concurrent.futures import ProcessPoolExecutor
from functools import partial
from typing import Awaitable, Callable

import pytesseract
from PIL import Image

from yks_ocr.config import settings
from yks_ocr.errors import NoTextDetectedError, OcrEngineError, StagedFileMissingError
from yks_ocr.schemas import ExtractedText, UploadedImage
from yks_ocr.services.janitor import RequestResources

logger = logging.getLogger(__name__)


# =============================================================================
# Functions executed inside the worker process
# =============================================================================


def _check_language(language: str) -> None:
    """
    Makes sure Tesseract runs and has the language pack.

    Errors are re-raised as RuntimeError: pytesseract exceptions do not
    survive pickling back to the parent process.
    """
    try:
        available = pytesseract.get_languages(config="")
    except Exception as e:
        raise RuntimeError(f"Tesseract is not available: {e}") from None

    if language not in available:
        raise RuntimeError(
            f"Tesseract language pack '{language}' is not installed "
            f"(available: {', '.join(sorted(available)) or 'none'})"
        )


def _recognize_file(path: str, language: str, config: str) -> tuple[str, float]:
    """
    Recognises text in one image file.

    A single image_to_data call gives both the text and the word
    confidences.

    Args:
        path: path of the staged image
        language: Tesseract language code (e.g. "tur")
        config: Tesseract flags (OEM, PSM)

    Returns:
        tuple: (text, mean word confidence 0-100)
    """
    try:
        with Image.open(path) as img:
            # GIF/WebP/palette images: Tesseract wants plain RGB or grayscale
            image = img.convert("RGB") if img.mode not in ("RGB", "L") else img.copy()

        data = pytesseract.image_to_data(
            image,
            lang=language,
            config=config,
            output_type=pytesseract.Output.DICT,
        )
    except Exception as e:
        raise RuntimeError(f"{type(e).__name__}: {e}") from None

    text = _assemble_text_from_data(data)

    # Mean confidence over real words only (conf >= 0)
    confidences = [
        float(c)
        for c in data["conf"]
        if isinstance(c, (int, float)) and c >= 0
    ]
    avg_confidence = sum(confidences) / len(confidences) if confidences else 0.0

    return text, avg_confidence


def _assemble_text_from_data(data: dict) -> str:
    """
    Builds text from the image_to_data dictionary keeping the layout.

    Algorithm:
        - words on one line (line_num) are joined with spaces
        - lines of one block are joined with a newline
        - blocks are separated by an empty line

    Args:
        data: dictionary returned by pytesseract.image_to_data()

    Returns:
        str: assembled text
    """
    # {block_num: {par_num: {line_num: [words]}}}
    blocks: dict = {}

    for i, raw_word in enumerate(data["text"]):
        word = str(raw_word).strip()
        if not word:
            continue

        block = data["block_num"][i]
        par = data["par_num"][i]
        line = data["line_num"][i]

        blocks.setdefault(block, {}).setdefault(par, {}).setdefault(line, []).append(word)

    result_blocks = []
    for block_num in sorted(blocks):
        block_lines = []
        for par_num in sorted(blocks[block_num]):
            for line_num in sorted(blocks[block_num][par_num]):
                block_lines.append(" ".join(blocks[block_num][par_num][line_num]))
        result_blocks.append("\n".join(block_lines))

    return "\n\n".join(result_blocks)


# =============================================================================
# Worker handle
# =============================================================================


class OcrWorker:
    """
    Handle to a running Tesseract worker process.

    Pinned to one language for its whole life. Must be terminated exactly
    once; any use after termination raises RuntimeError.
    """

    def __init__(self, language: str, pool: ProcessPoolExecutor):
        self.language = language
        self.terminated = False
        self._pool = pool
        self._config = f"--oem {settings.ocr_oem} --psm {settings.ocr_psm}"

    async def recognize(self, path: str) -> tuple[str, float]:
        if self.terminated:
            raise RuntimeError("OCR worker used after termination")

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._pool, _recognize_file, path, self.language, self._config
        )

    async def terminate(self) -> None:
        if self.terminated:
            raise RuntimeError("OCR worker already terminated")
        self.terminated = True

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None, partial(self._pool.shutdown, wait=True, cancel_futures=True)
        )


WorkerFactory = Callable[[str], Awaitable[OcrWorker]]


async def create_worker(language: str) -> OcrWorker:
    """
    Starts a Tesseract worker process for the given language.

    Raises:
        RuntimeError: Tesseract or the language pack is missing; the
            process is shut down before the error propagates
    """
    pool = ProcessPoolExecutor(max_workers=1)
    loop = asyncio.get_running_loop()

    try:
        await loop.run_in_executor(pool, _check_language, language)
    except BaseException:
        pool.shutdown(wait=False, cancel_futures=True)
        raise

    return OcrWorker(language, pool)


# =============================================================================
# OCR stage
# =============================================================================


async def extract(
    image: UploadedImage,
    resources: RequestResources,
    worker_factory: WorkerFactory = create_worker,
) -> ExtractedText:
    """
    Runs OCR on the staged image.

    Steps:
        1. Acquire a worker for settings.ocr_language
        2. Check the staged file still exists
        3. Recognise text (single attempt)
        4. Terminate the worker, delete the staged file
        5. Trim the text; empty text is a failure

    Args:
        image: staged upload
        resources: resources of the current request
        worker_factory: coroutine function creating a worker

    Returns:
        ExtractedText: non-empty trimmed text

    Raises:
        StagedFileMissingError: the staged file disappeared
        OcrEngineError: Tesseract could not start or failed
        NoTextDetectedError: nothing but whitespace was recognised
    """
    start = time.perf_counter()

    try:
        logger.info(f"Initializing Tesseract worker ({settings.ocr_language})")
        try:
            worker = await worker_factory(settings.ocr_language)
        except Exception as e:
            raise OcrEngineError(f"Failed to start OCR worker: {e}") from e
        resources.track_worker(worker)

        if not os.path.exists(image.storage_path):
            raise StagedFileMissingError(image.storage_path)

        logger.info(f"Performing OCR on {image.original_filename or image.storage_path}")
        try:
            text, confidence = await worker.recognize(image.storage_path)
        except Exception as e:
            raise OcrEngineError(f"OCR recognition failed: {e}") from e
    finally:
        await resources.release_worker()
        resources.discard_staged_file()

    raw = text.strip()
    duration = int((time.perf_counter() - start) * 1000)

    if not raw:
        logger.info(f"OCR found no text ({duration}ms)")
        raise NoTextDetectedError()

    logger.info(
        f"OCR completed: {len(raw)} chars, confidence {confidence:.0f}%, {duration}ms"
    )
    return ExtractedText(raw=raw, confidence=confidence)
