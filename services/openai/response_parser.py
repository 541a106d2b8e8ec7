"""Helpers to parse Responses API outputs."""

import json
from typing import Any, Dict, List, Optional

from models.capture_models import BoundingBox, RecognizedWord


def parse_function_call(response: Any, *, tool_name: str) -> Dict[str, Any]:
    """Extract the decoded function call arguments for the specified tool name."""
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", None) == "function_call" and getattr(item, "name", None) == tool_name:
            return json.loads(getattr(item, "arguments", "{}") or "{}")
    raise RuntimeError(f"No function_call output for '{tool_name}' found in Responses API output.")


def parse_words(raw_words: Any, width: int, height: int) -> List[RecognizedWord]:
    """Turn tool-call word entries into RecognizedWord objects.

    Coordinates are clamped to the image and swapped when reported reversed;
    entries without text or with a degenerate box are dropped.
    """
    words: List[RecognizedWord] = []
    for raw in raw_words or []:
        if not isinstance(raw, dict):
            continue
        text = str(raw.get("text", "")).strip()
        if not text:
            continue
        try:
            x0, x1 = sorted((float(raw["x0"]), float(raw["x1"])))
            y0, y1 = sorted((float(raw["y0"]), float(raw["y1"])))
        except (KeyError, TypeError, ValueError):
            continue
        box = BoundingBox(
            x0=min(max(x0, 0.0), width),
            y0=min(max(y0, 0.0), height),
            x1=min(max(x1, 0.0), width),
            y1=min(max(y1, 0.0), height),
        )
        if box.width <= 0 or box.height <= 0:
            continue
        words.append(RecognizedWord(text=text, bbox=box))
    return words


def extract_usage(response: Any) -> Dict[str, Optional[int]]:
    """Return token usage information from the response, if present."""
    usage = getattr(response, "usage", None)
    return {
        "input_tokens": getattr(usage, "input_tokens", None) if usage else None,
        "output_tokens": getattr(usage, "output_tokens", None) if usage else None,
    }
