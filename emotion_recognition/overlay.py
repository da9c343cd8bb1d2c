from __future__ import annotations
from typing import Iterable, Tuple

import cv2
import numpy as np

from .types import FaceEmotion

TEXT_INDENT_FACTOR = 0.1


def draw_face_overlays(image: np.ndarray, faces: Iterable[FaceEmotion],
                       color: Tuple[int, int, int] = (0, 255, 0), thickness: int = 2) -> np.ndarray:
    """Return a copy of `image` with each face box and its 1-based index drawn."""
    canvas = image.copy()
    for face in faces:
        b = face.box
        cv2.rectangle(canvas, (b.left, b.top), (b.right, b.bottom), color, thickness)
        org = (int(b.left + b.width * TEXT_INDENT_FACTOR), int(b.bottom - b.height * TEXT_INDENT_FACTOR))
        cv2.putText(canvas, str(face.face_index), org, cv2.FONT_HERSHEY_SIMPLEX, 1.0, color, 2)
    return canvas


def draw_status_text(image: np.ndarray, lines: Iterable[str], color: Tuple[int, int, int] = (0, 255, 255)) -> np.ndarray:
    """Draw text lines in the top-left corner, in place."""
    y = 30
    for line in lines:
        cv2.putText(image, line, (10, y), cv2.FONT_HERSHEY_SIMPLEX, 0.7, color, 2)
        y += 28
    return image
