from __future__ import annotations
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, List, Optional
import threading

import numpy as np

from .types import BoundingBox, DetectionProfile
from .errors import DetectionFailure


class IFaceEngine:
    """Interface for face detection engines working on upright RGB images."""

    def find_faces(self, image: np.ndarray) -> List[BoundingBox]:
        raise NotImplementedError

    def close(self) -> None:
        pass


class MediaPipeFaceEngine(IFaceEngine):
    """Adapter around MediaPipe face detection.

    - model_selection 0: short range model, fast (live)
    - model_selection 1: full range model, more accurate (still images)
    Boxes are returned in the engine's order, converted to pixels.
    """

    def __init__(self, profile: DetectionProfile):
        import mediapipe as mp

        self.profile = profile
        self._detector = mp.solutions.face_detection.FaceDetection(
            model_selection=int(profile.model_selection),
            min_detection_confidence=float(profile.min_detection_confidence),
        )

    def find_faces(self, image: np.ndarray) -> List[BoundingBox]:
        h, w = image.shape[:2]
        results = self._detector.process(np.ascontiguousarray(image))
        boxes: List[BoundingBox] = []
        for det in results.detections or []:
            rel = det.location_data.relative_bounding_box
            left = int(round(rel.xmin * w))
            top = int(round(rel.ymin * h))
            boxes.append(BoundingBox(
                left=left,
                top=top,
                right=left + int(round(rel.width * w)),
                bottom=top + int(round(rel.height * h)),
            ))
        return boxes

    def close(self) -> None:
        if self._detector:
            self._detector.close()
            self._detector = None


class FaceLocator:
    """Runs face detection off the calling thread.

    detect() returns a Future resolving to the ordered list of boxes (possibly
    empty) or raising DetectionFailure. One engine per profile is created on
    first use; all engine calls happen on a single worker thread.
    """

    def __init__(self, engine_factory: Optional[Callable[[DetectionProfile], IFaceEngine]] = None):
        self._engine_factory = engine_factory or MediaPipeFaceEngine
        self._engines: Dict[str, IFaceEngine] = {}
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="face-locator")
        self._lock = threading.Lock()
        self._closed = False

    def _engine_for(self, profile: DetectionProfile) -> IFaceEngine:
        engine = self._engines.get(profile.name)
        if engine is None:
            engine = self._engine_factory(profile)
            self._engines[profile.name] = engine
        return engine

    @staticmethod
    def _large_enough(box: BoundingBox, image_w: int, image_h: int, min_face_size: float) -> bool:
        return box.width >= min_face_size * min(image_w, image_h)

    def _run(self, image: np.ndarray, profile: DetectionProfile) -> List[BoundingBox]:
        try:
            boxes = self._engine_for(profile).find_faces(image)
        except Exception as e:
            raise DetectionFailure(f"{profile.name} face search failed: {e}") from e
        h, w = image.shape[:2]
        return [b for b in boxes if self._large_enough(b, w, h, profile.min_face_size)]

    def detect(self, image: np.ndarray, profile: DetectionProfile) -> "Future[List[BoundingBox]]":
        with self._lock:
            if self._closed:
                fut: Future = Future()
                fut.set_exception(DetectionFailure("face locator is closed"))
                return fut
            return self._executor.submit(self._run, image, profile)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=True)
        for engine in self._engines.values():
            try:
                engine.close()
            except Exception:
                pass
        self._engines.clear()
