"""Build the Responses API input array for a recognition request."""

from typing import Any, Dict, List

from utils.media_validation import to_data_url


def build_inputs(system_prompt: str, user_prompt: str, *, image_png: bytes) -> List[Dict[str, Any]]:
    """Return system, instruction and image messages as separate input entries."""
    return [
        {
            "type": "message",
            "role": "system",
            "content": [{"type": "input_text", "text": system_prompt}],
        },
        {"type": "message", "role": "user", "content": [{"type": "input_text", "text": user_prompt}]},
        {
            "type": "message",
            "role": "user",
            "content": [{"type": "input_image", "image_url": to_data_url(image_png, "image/png")}],
        },
    ]
