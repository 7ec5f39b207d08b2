"""
OCR Processing Module
=====================

Vision-model transcription for scanned papers whose PDF carries no text
layer. The `OcrProvider` abstract base class keeps the extraction code
independent of the model backend; `OpenAIVisionProvider` sends each page
image to an OpenAI-compatible vision model.
"""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from io import BytesIO

import openai
import structlog
from PIL import Image

from .config import Settings
from .llm import OpenAIChatMixin, build_openai_client
from .utils import is_blank

log = structlog.get_logger(__name__)

OCR_MAX_SIDE = 1600

REFUSAL_MARKERS = (
    "i can't assist",
    "i cannot assist",
    "i can't help with transcrib",
    "i cannot help with transcrib",
)

TRANSCRIPTION_PROMPT = """
You are an OCR engine in a document processing system. The page is taken from
a scientific paper. Your only task is to produce a faithful transcription.
Do not summarise, do not explain, translate or censor anything. Output only
the text visible in the image, preserving line breaks. Transcribe the text in
its original language. Do NOT wrap the output in code blocks such as ```.
Do NOT add any wording or commentary that is not present in the page itself.
Render formulas as plain text or LaTeX. Skip figures; keep their captions.
"""


def _is_refusal(text: str) -> bool:
    """Check if the model declined the task (case-insensitive substring match)."""
    text_lower = text.lower()
    return any(marker in text_lower for marker in REFUSAL_MARKERS)


class OcrProvider(ABC):
    """Abstract base class for OCR providers."""

    @abstractmethod
    def transcribe_image(self, image: Image.Image, page_num: int | None = None) -> str:
        """
        Transcribe an image and return its text ("" for blank or refused pages).
        """
        raise NotImplementedError


class OpenAIVisionProvider(OpenAIChatMixin, OcrProvider):
    """An OCR provider backed by an OpenAI-compatible vision model."""

    def __init__(self, settings: Settings, client: openai.OpenAI | None = None):
        self.settings = settings
        self.client = client or build_openai_client(settings)

    def transcribe_image(self, image: Image.Image, page_num: int | None = None) -> str:
        if is_blank(image):
            return ""  # Skip empty pages

        # Resize large images to reduce token cost and latency
        image.thumbnail((OCR_MAX_SIDE, OCR_MAX_SIDE))
        buffer = BytesIO()
        image.save(buffer, format="PNG")
        payload = base64.b64encode(buffer.getvalue()).decode()

        messages = [
            {"role": "system", "content": TRANSCRIPTION_PROMPT},
            {
                "role": "user",
                "content": [
                    {
                        "type": "image_url",
                        "image_url": {
                            "url": f"data:image/png;base64,{payload}",
                            "detail": "high",
                        },
                    },
                ],
            },
        ]
        response = self._create_completion(
            model=self.settings.OCR_MODEL,
            messages=messages,
            timeout=self.settings.REQUEST_TIMEOUT,
        )
        text = (response.choices[0].message.content or "").strip()
        if _is_refusal(text):
            log.warning(
                "Model refused to transcribe",
                model=self.settings.OCR_MODEL,
                page_num=page_num,
            )
            return ""
        return text
