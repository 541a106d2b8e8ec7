"""Description: Screenshot text recognition using OpenAI's Responses API."""

import logging
import time
from typing import Any, Dict, List

from openai import AsyncOpenAI

from services.openai.image_prompts import build_system_prompt, build_user_prompt
from services.openai.image_schema import FUNCTION_DEFINITION, FUNCTION_NAME
from services.openai.media_inputs import build_inputs
from services.openai.response_parser import extract_usage, parse_function_call, parse_words
from services.recognition.engine import RecognitionEngine, RecognitionError, RecognitionResult

LOGGER = logging.getLogger(__name__)


class OpenAIRecognitionEngine(RecognitionEngine):
    """Recognize text and word boxes with a vision model forced onto a strict tool call."""

    name = "openai"

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-5") -> None:
        """Initialize the engine with an OpenAI async client."""
        if client is None:
            raise ValueError("OpenAI client must be provided.")
        self.client = client
        self.model = model
        self.system_prompt = build_system_prompt()

    async def recognize(self, image_png: bytes, width: int, height: int) -> RecognitionResult:
        start_time = time.time()
        inputs = build_inputs(self.system_prompt, build_user_prompt(width, height), image_png=image_png)
        response = await self._create_response(inputs)
        result = self._parse_response(response, width, height)
        usage = extract_usage(response)
        LOGGER.info(
            "Recognized %d words in %.2fs (input_tokens=%s, output_tokens=%s)",
            len(result.words),
            time.time() - start_time,
            usage["input_tokens"],
            usage["output_tokens"],
        )
        return result

    async def aclose(self) -> None:
        await self.client.close()

    async def _create_response(self, inputs: List[Dict[str, Any]]) -> Any:
        """Send the recognition request to the OpenAI Responses API."""
        try:
            return await self.client.responses.create(
                model=self.model,
                input=inputs,
                tools=[FUNCTION_DEFINITION],
                tool_choice={"type": "function", "name": FUNCTION_NAME},
            )
        except Exception as exc:
            LOGGER.error("Error during OpenAI Responses API call: %s", exc)
            raise

    def _parse_response(self, response: Any, width: int, height: int) -> RecognitionResult:
        try:
            args = parse_function_call(response, tool_name=FUNCTION_NAME)
        except Exception as exc:
            LOGGER.error("Error parsing OpenAI response: %s", exc)
            LOGGER.debug("Full response object: %r", response)
            raise RecognitionError(str(exc)) from exc

        words = parse_words(args.get("words"), width, height)
        text = str(args.get("text") or "").strip()
        if not text and words:
            text = " ".join(word.text for word in words)
        return RecognitionResult(text=text, words=words)
