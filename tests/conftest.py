"""
Test configuration and fixtures.

Tesseract and Gemini are replaced by in-process fakes: the OCR worker
factory and the generative model are injected into OcrPipeline and
TopicRefiner, and the FastAPI dependencies are overridden.
"""

import asyncio
import os
from typing import Optional

# Settings are built at import time and require the Gemini credential
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")

import pytest
from fastapi.testclient import TestClient

from yks_ocr.main import app, get_pipeline, get_refiner
from yks_ocr.pipeline import OcrPipeline
from yks_ocr.services.refiner import TopicRefiner

QUESTION_TEXT = (
    "Bitkilerde fotosentez hızını etkileyen faktörlerden hangisi "
    "sıcaklık değildir?"
)


class FakeWorker:
    """OCR worker double: returns fixed text and counts terminations."""

    def __init__(self, text: str = "", error: Optional[Exception] = None):
        self.text = text
        self.error = error
        self.recognized: list[str] = []
        self.terminate_calls = 0

    async def recognize(self, path: str) -> tuple[str, float]:
        if self.terminate_calls:
            raise RuntimeError("OCR worker used after termination")
        self.recognized.append(path)
        if self.error is not None:
            raise self.error
        return self.text, 91.0

    async def terminate(self) -> None:
        self.terminate_calls += 1


class FakeWorkerFactory:
    """Creates FakeWorkers and remembers them for assertions."""

    def __init__(
        self,
        text: str = "",
        error: Optional[Exception] = None,
        start_error: Optional[Exception] = None,
    ):
        self.text = text
        self.error = error
        self.start_error = start_error
        self.languages: list[str] = []
        self.workers: list[FakeWorker] = []

    async def __call__(self, language: str) -> FakeWorker:
        self.languages.append(language)
        if self.start_error is not None:
            raise self.start_error
        worker = FakeWorker(self.text, self.error)
        self.workers.append(worker)
        return worker


class FakeResponse:
    def __init__(self, text: Optional[str]):
        self._text = text

    @property
    def text(self) -> str:
        # genai raises ValueError when the answer has no text parts
        if self._text is None:
            raise ValueError("The response does not contain any text parts")
        return self._text


class FakeModel:
    """Generative model double with optional delay and failure."""

    def __init__(
        self,
        text: Optional[str] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.text = text
        self.error = error
        self.delay = delay
        self.prompts: list[str] = []
        self.generation_configs: list = []
        self.finished = False

    async def generate_content_async(self, prompt, generation_config=None):
        self.prompts.append(prompt)
        self.generation_configs.append(generation_config)
        if self.delay:
            await asyncio.sleep(self.delay)
        self.finished = True
        if self.error is not None:
            raise self.error
        return FakeResponse(self.text)


@pytest.fixture
def staging_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def make_client(staging_dir):
    """Builds a TestClient wired to the given fakes."""

    def _make(
        worker_factory: FakeWorkerFactory,
        model: FakeModel,
        *,
        timeout_seconds: float = 1.0,
        max_file_size_bytes: int = 10 * 1024 * 1024,
    ) -> TestClient:
        refiner = TopicRefiner(model, timeout_seconds=timeout_seconds, min_chars=10)
        pipeline = OcrPipeline(
            refiner=refiner,
            worker_factory=worker_factory,
            staging_dir=str(staging_dir),
            max_file_size_bytes=max_file_size_bytes,
        )
        app.dependency_overrides[get_pipeline] = lambda: pipeline
        app.dependency_overrides[get_refiner] = lambda: refiner
        return TestClient(app)

    yield _make
    app.dependency_overrides.clear()


def staged_files(staging_dir) -> list:
    if not staging_dir.exists():
        return []
    return list(staging_dir.iterdir())
