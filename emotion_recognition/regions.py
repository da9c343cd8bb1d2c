from __future__ import annotations
from typing import Iterable, List, Optional, Tuple

import cv2
import numpy as np

from .types import BoundingBox, ColorProfile, FaceRegion, Frame, PixelEncoding
from .errors import EmptyRegion


_ROTATE_CODES = {
    90: cv2.ROTATE_90_CLOCKWISE,
    180: cv2.ROTATE_180,
    270: cv2.ROTATE_90_COUNTERCLOCKWISE,
}


def _gray_to_rgb(luma: np.ndarray) -> np.ndarray:
    # Replicate luminance into R, G and B
    return np.repeat(np.ascontiguousarray(luma, dtype=np.uint8)[:, :, None], 3, axis=2)


def _luminance(frame: Frame) -> np.ndarray:
    plane = frame.planes[0]
    if frame.encoding in (PixelEncoding.LUMA, PixelEncoding.YUV420):
        # Y plane may carry row padding; keep the visible area only
        return plane[:frame.height, :frame.width]
    if frame.encoding is PixelEncoding.RGB:
        return cv2.cvtColor(plane, cv2.COLOR_RGB2GRAY)
    return cv2.cvtColor(plane, cv2.COLOR_BGR2GRAY)


def _full_color(frame: Frame) -> np.ndarray:
    if frame.encoding is PixelEncoding.LUMA:
        return _gray_to_rgb(_luminance(frame))
    if frame.encoding is PixelEncoding.YUV420:
        if len(frame.planes) < 3:
            raise ValueError("YUV420 frame needs Y, U and V planes")
        y, u, v = (np.ascontiguousarray(p, dtype=np.uint8) for p in frame.planes[:3])
        w, h = frame.width, frame.height
        # Chroma is subsampled 2x2, rounded up for odd sizes
        ch, cw = (h + 1) // 2, (w + 1) // 2
        if u.shape[0] < ch or u.shape[1] < cw or v.shape[0] < ch or v.shape[1] < cw:
            raise ValueError(f"YUV420 chroma planes smaller than {cw}x{ch}")

        def upsample(plane):
            return np.repeat(np.repeat(plane[:ch, :cw], 2, axis=0), 2, axis=1)[:h, :w]

        yuv = np.dstack([y[:h, :w], upsample(u), upsample(v)])
        return cv2.cvtColor(yuv, cv2.COLOR_YUV2RGB)
    if frame.encoding is PixelEncoding.BGR:
        return cv2.cvtColor(frame.planes[0], cv2.COLOR_BGR2RGB)
    return np.ascontiguousarray(frame.planes[0])


def rotate_upright(image: np.ndarray, rotation: int) -> np.ndarray:
    """Rotate clockwise by `rotation` degrees (0/90/180/270)."""
    if rotation == 0:
        return image
    return cv2.rotate(image, _ROTATE_CODES[rotation])


class RegionExtractor:
    """Turns raw frames into upright RGB images and crops face regions out of them.

    Steps per face:
    - convert planes to an RGB image according to the color profile
    - rotate to the upright orientation (boxes are upright coordinates)
    - clamp the box into the image and reject empty results

    Holds no mutable state; safe to call from any thread.
    """

    def __init__(self, color: ColorProfile = ColorProfile.FULL_COLOR):
        self.color = color

    def to_image(self, frame: Frame) -> np.ndarray:
        """Return the upright HxWx3 uint8 RGB image for a frame."""
        if self.color is ColorProfile.LUMINANCE:
            image = _gray_to_rgb(_luminance(frame))
        else:
            image = _full_color(frame)
        return rotate_upright(image, frame.rotation)

    @staticmethod
    def crop(image: np.ndarray, box: BoundingBox, face_index: int = 1) -> FaceRegion:
        """Crop an upright image; raises EmptyRegion if the clamped box has no area."""
        h, w = image.shape[:2]
        clamped = box.clamp(w, h)
        if clamped.is_empty():
            raise EmptyRegion(f"face {face_index}: box {box} is empty inside {w}x{h}")
        pixels = image[clamped.top:clamped.bottom, clamped.left:clamped.right].copy()
        return FaceRegion(face_index=face_index, box=clamped, image=pixels)

    def extract(self, frame: Frame, box: BoundingBox, face_index: int = 1) -> Optional[FaceRegion]:
        """Crop one face from a frame, or None when the box degenerates."""
        try:
            return self.crop(self.to_image(frame), box, face_index)
        except EmptyRegion:
            return None

    def extract_all(self, image: np.ndarray, boxes: Iterable[BoundingBox]) -> List[Tuple[int, Optional[FaceRegion]]]:
        """Crop every box from an already upright image.

        Returns (face_index, region-or-None) pairs in detector order, indices 1-based.
        """
        out: List[Tuple[int, Optional[FaceRegion]]] = []
        for idx, box in enumerate(boxes, start=1):
            try:
                out.append((idx, self.crop(image, box, idx)))
            except EmptyRegion:
                out.append((idx, None))
        return out
