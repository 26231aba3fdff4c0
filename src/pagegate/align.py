"""Align character spans of the page text to OCR word boxes.

The page text is rebuilt from the OCR tokens (words joined by a space, lines
by a newline), so each word has an exact character range. A span selects every
word it overlaps; each selected word keeps its own box so redaction can fill
word by word.
"""

from typing import List, Tuple

import pandas as pd

from .geometry import BoundingBox

PixelBox = Tuple[int, int, int, int]


def build_text(words: pd.DataFrame) -> Tuple[str, List[Tuple[int, int]]]:
    """Rebuild page text from word rows and return per-word offsets.

    Parameters
    ----------
    words:
        Word-level rows of a Tesseract TSV frame (see
        :func:`pagegate.ocr.image_ocr_tsv`), in reading order.

    Returns
    -------
    tuple
        ``(text, offsets)`` where ``offsets[i]`` is the ``(start, end)``
        character range of word ``i`` in ``text``.
    """
    parts: List[str] = []
    offsets: List[Tuple[int, int]] = []
    cursor = 0
    prev_line = None
    for row in words.itertuples(index=False):
        token = str(row.text)
        line = (
            getattr(row, "block_num", 0),
            getattr(row, "par_num", 0),
            getattr(row, "line_num", 0),
        )
        if parts:
            parts.append("\n" if line != prev_line else " ")
            cursor += 1
        prev_line = line
        parts.append(token)
        offsets.append((cursor, cursor + len(token)))
        cursor += len(token)
    return "".join(parts), offsets


def span_word_indices(offsets: List[Tuple[int, int]], start: int, end: int) -> List[int]:
    return [i for i, (ws, we) in enumerate(offsets) if not (end <= ws or start >= we)]


def span_word_boxes(
    words: pd.DataFrame, offsets: List[Tuple[int, int]], start: int, end: int
) -> List[PixelBox]:
    """Pixel boxes ``(x, y, w, h)`` of the words overlapping ``[start, end)``."""
    idx = span_word_indices(offsets, start, end)
    if not idx:
        return []
    sel = words.iloc[idx]
    return [
        (int(r.left), int(r.top), int(r.width), int(r.height))
        for r in sel.itertuples(index=False)
    ]


def normalize_box(box: PixelBox, width: int, height: int) -> BoundingBox:
    """Pixel box to page-relative coordinates."""
    x, y, w, h = box
    return BoundingBox(
        left=x / width, top=y / height, width=w / width, height=h / height
    ).clamp()
