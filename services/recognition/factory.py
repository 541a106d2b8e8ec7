"""Select the recognition engine named in the settings."""

from __future__ import annotations

import logging
from typing import Optional

from openai import AsyncOpenAI

from services.openai.text_recognizer import OpenAIRecognitionEngine
from services.recognition.engine import RecognitionEngine
from services.recognition.tesseract_engine import TesseractRecognitionEngine
from utils.settings import Settings

LOGGER = logging.getLogger(__name__)


def build_engine(settings: Settings, client: Optional[AsyncOpenAI] = None) -> Optional[RecognitionEngine]:
    """Return the configured engine, or None when recognition is disabled.

    An OpenAI engine is only built when a client is given or OPENAI_API_KEY
    is set; otherwise recognition is switched off with a warning.
    """
    name = settings.recognition_engine
    if name == "none":
        LOGGER.info("Text recognition disabled")
        return None
    if name == "tesseract":
        return TesseractRecognitionEngine(language=settings.tesseract_language)

    if client is None:
        try:
            client = AsyncOpenAI()
        except Exception as exc:
            LOGGER.warning("OpenAI client unavailable, text recognition disabled: %s", exc)
            return None
    return OpenAIRecognitionEngine(client, model=settings.openai_model)
