"""Schema definition for the text recognition tool."""

from typing import Any, Dict

FUNCTION_NAME = "report_recognized_text"

_WORD_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "text": {"type": "string", "description": "The word exactly as it appears."},
        "x0": {"type": "number", "description": "Left edge in pixels."},
        "y0": {"type": "number", "description": "Top edge in pixels."},
        "x1": {"type": "number", "description": "Right edge in pixels."},
        "y1": {"type": "number", "description": "Bottom edge in pixels."},
    },
    "required": ["text", "x0", "y0", "x1", "y1"],
    "additionalProperties": False,
}

FUNCTION_DEFINITION: Dict[str, Any] = {
    "type": "function",
    "name": FUNCTION_NAME,
    "description": "Return the full transcription of the image and every word with its bounding box.",
    "parameters": {
        "type": "object",
        "properties": {
            "text": {
                "type": "string",
                "description": "All visible text in reading order, lines separated by newlines.",
            },
            "words": {
                "type": "array",
                "description": "Each recognized word with its pixel bounding box.",
                "items": _WORD_SCHEMA,
            },
        },
        "required": ["text", "words"],
        "additionalProperties": False,
    },
    "strict": True,
}
