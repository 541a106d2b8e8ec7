"""Prompt builders for screenshot text recognition."""

def build_system_prompt() -> str:
    """Return the system prompt for the recognizer."""
    return (
        "You are a precise optical character recognition engine. "
        "You transcribe exactly the text visible in an image and never invent, "
        "translate, or correct words. "
        "Every word you report comes with a tight pixel bounding box."
    )


def build_user_prompt(width: int, height: int) -> str:
    """Return the user prompt, pinning the coordinate space to the image size."""
    return (
        f"The image below is {width} pixels wide and {height} pixels tall. "
        "Transcribe all visible text in reading order as `text`, keeping line breaks. "
        "Also list each word separately in `words` with its bounding box in pixels, "
        "origin at the top-left corner: x0 and y0 for the top-left, x1 and y1 for the "
        f"bottom-right, with 0 <= x0 < x1 <= {width} and 0 <= y0 < y1 <= {height}. "
        "If the image contains no text, return an empty string and an empty list."
    )
