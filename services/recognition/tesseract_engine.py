"""Local recognition through the `tesseract` command line tool."""

from __future__ import annotations

import asyncio
import csv
import logging
from typing import Dict, List, Optional, Tuple

from models.capture_models import BoundingBox, RecognizedWord
from services.recognition.engine import RecognitionEngine, RecognitionError, RecognitionResult

LOGGER = logging.getLogger(__name__)

_LineKey = Tuple[int, int, int]


def _normalize_confidence(raw: str) -> Optional[float]:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if value < 0:
        return None
    # TSV confidence is 0..100
    return max(0.0, min(1.0, value / 100.0))


def parse_tsv(tsv: str) -> RecognitionResult:
    """Collect word-level rows of tesseract TSV output into a result.

    Rows at any level other than 5 (word) are ignored, as are rows with
    empty text or malformed geometry. The transcription joins words with
    spaces and lines with newlines, following block/paragraph/line order.
    """
    lines: Dict[_LineKey, List[Tuple[int, RecognizedWord]]] = {}
    for row in csv.DictReader(tsv.splitlines(), delimiter="\t", quoting=csv.QUOTE_NONE):
        if (row.get("level") or "").strip() != "5":
            continue
        text = (row.get("text") or "").strip()
        if not text:
            continue
        try:
            key = (int(row["block_num"]), int(row["par_num"]), int(row["line_num"]))
            word_num = int(row["word_num"])
            left, top = int(row["left"]), int(row["top"])
            width, height = int(row["width"]), int(row["height"])
        except (KeyError, TypeError, ValueError):
            continue
        word = RecognizedWord(
            text=text,
            bbox=BoundingBox(x0=left, y0=top, x1=left + width, y1=top + height),
            confidence=_normalize_confidence(row.get("conf", "")),
        )
        lines.setdefault(key, []).append((word_num, word))

    words: List[RecognizedWord] = []
    text_lines: List[str] = []
    for key in sorted(lines):
        line_words = [word for _, word in sorted(lines[key], key=lambda item: item[0])]
        words.extend(line_words)
        text_lines.append(" ".join(word.text for word in line_words))
    return RecognitionResult(text="\n".join(text_lines), words=words)


class TesseractRecognitionEngine(RecognitionEngine):
    """
    Run `tesseract stdin stdout -l <lang> tsv` on the prepared PNG.

    The tool runs as an asyncio subprocess. When the call is cancelled (the
    recognition queue's timeout) the process is killed and reaped before the
    cancellation propagates, so no orphaned tesseract keeps the CPU busy
    while the next job starts.
    """

    name = "tesseract"

    def __init__(self, language: str = "eng", psm: Optional[int] = None, binary: str = "tesseract") -> None:
        self.language = language
        self.psm = psm
        self.binary = binary

    def _command(self) -> List[str]:
        cmd = [self.binary, "stdin", "stdout", "-l", self.language]
        if self.psm is not None:
            cmd.extend(["--psm", str(self.psm)])
        cmd.append("tsv")
        return cmd

    async def _run(self, image_png: bytes) -> str:
        cmd = self._command()
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise RecognitionError(f"{self.binary} binary not found on PATH") from exc

        try:
            stdout, stderr = await proc.communicate(input=image_png)
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            await proc.wait()
            LOGGER.debug("Killed tesseract process %s", proc.pid)
            raise

        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace")[-2000:]
            raise RecognitionError(f"tesseract exited with {proc.returncode}: {message}")
        return stdout.decode("utf-8", errors="replace")

    async def recognize(self, image_png: bytes, width: int, height: int) -> RecognitionResult:
        tsv = await self._run(image_png)
        result = parse_tsv(tsv)
        LOGGER.debug("tesseract returned %d words for a %dx%d image", len(result.words), width, height)
        return result
