from __future__ import annotations
from concurrent.futures import Future
from functools import partial
from typing import Callable, List, Optional, Sequence
import threading
import time

import cv2
import numpy as np

from .types import (
    BoundingBox, DetectionProfile, FaceEmotion, Frame, OutputStatus, PerformanceStats,
    PipelineOutput, PipelineState, PixelEncoding,
)
from .errors import ClassifierDisposedError, DetectionFailure, InferenceError
from .detection import FaceLocator
from .regions import RegionExtractor
from .classifier import EmotionClassifier
from .ranking import ResultRanker
from .dispatch import ImmediateDispatcher
from .logger import EventLogger
from .monitor import PerformanceMonitor
from .storage import EphemeralImageStore


EXIF_ORIENTATION_TAG = 0x0112
EXIF_ROTATION = {1: 0, 3: 180, 6: 90, 8: 270}


def _ms_since(t0: float) -> float:
    return (time.perf_counter() - t0) * 1000.0


class AdmissionGate:
    """Single-slot gate: try_enter() is an atomic test-and-set, leave() frees the slot.

    Entry and exit may happen on different threads.
    """

    def __init__(self):
        self._slot = threading.Lock()

    def try_enter(self) -> bool:
        return self._slot.acquire(blocking=False)

    def wait_and_enter(self, timeout: Optional[float] = None) -> bool:
        return self._slot.acquire(timeout=-1 if timeout is None else timeout)

    def leave(self) -> None:
        self._slot.release()

    @property
    def busy(self) -> bool:
        return self._slot.locked()


class _FaceChain:
    """Per-image chain shared by the live and still paths: crop → classify → rank."""

    def __init__(self, locator: FaceLocator, classifier: EmotionClassifier, profile: DetectionProfile,
                 logger: Optional[EventLogger] = None, monitor: Optional[PerformanceMonitor] = None,
                 store: Optional[EphemeralImageStore] = None):
        self.locator = locator
        self.classifier = classifier
        self.profile = profile
        self.extractor = RegionExtractor(profile.color)
        self.ranker = ResultRanker()
        self.log = logger or EventLogger()
        self.perf = monitor or PerformanceMonitor()
        self.store = store

    def _classify_faces(self, image: np.ndarray, boxes: Sequence[BoundingBox],
                        stats: PerformanceStats) -> List[FaceEmotion]:
        t0 = time.perf_counter()
        regions = self.extractor.extract_all(image, boxes)
        stats.t_extract_ms = _ms_since(t0)

        faces: List[FaceEmotion] = []
        t0 = time.perf_counter()
        for idx, region in regions:
            if region is None:
                self.log.debug(f"face {idx}: region empty after clamping, skipped")
                continue
            if self.store is not None:
                try:
                    self.store.save(region.image, tag=f"face{idx}")
                except OSError as e:
                    self.log.warning(f"face {idx}: crop not saved: {e}")
            try:
                result = self.classifier.classify(region)
            except ClassifierDisposedError as e:
                self.log.error(f"classifier unavailable: {e}")
                break
            except InferenceError as e:
                self.log.error(f"face {idx}: inference error: {e}")
                continue
            faces.append(FaceEmotion(face_index=idx, box=region.box, ranked=self.ranker.rank(result)))
        stats.t_classify_ms = _ms_since(t0)
        return faces

    def _build_output(self, image: np.ndarray, boxes: Sequence[BoundingBox], stats: PerformanceStats,
                      timestamp: float) -> PipelineOutput:
        if not boxes:
            return PipelineOutput(status=OutputStatus.NO_FACE, timestamp=timestamp, perf=stats, image=image)
        faces = self._classify_faces(image, boxes, stats)
        return PipelineOutput(
            status=OutputStatus.FACES,
            faces=list(self.ranker.merge_faces(faces).values()),
            timestamp=timestamp,
            perf=stats,
            image=image,
        )

    @staticmethod
    def _failed(reason: str, timestamp: float, stats: PerformanceStats,
                image: Optional[np.ndarray] = None,
                status: OutputStatus = OutputStatus.DETECTION_FAILED) -> PipelineOutput:
        return PipelineOutput(status=status, timestamp=timestamp, error=reason, perf=stats, image=image)


class PipelineCoordinator(_FaceChain):
    """Live-stream orchestrator: detect → crop → classify → rank → dispatch.

    Keep-latest/drop-if-busy admission: a frame submitted while a previous
    frame's chain is in flight is dropped, never queued. The slot is freed
    exactly once per admitted frame, on success and on every failure path.
    Results are handed to `sink` through `dispatcher`, which decides the
    thread the sink runs on.
    """

    def __init__(self, locator: FaceLocator, classifier: EmotionClassifier,
                 sink: Callable[[PipelineOutput], None], dispatcher=None,
                 profile: Optional[DetectionProfile] = None, logger: Optional[EventLogger] = None,
                 monitor: Optional[PerformanceMonitor] = None, store: Optional[EphemeralImageStore] = None):
        super().__init__(locator, classifier, profile or DetectionProfile.live(), logger, monitor, store)
        self.sink = sink
        self.dispatcher = dispatcher or ImmediateDispatcher()
        self._gate = AdmissionGate()
        self._accepting = True
        self._shutdown_lock = threading.Lock()
        self._closed = False

    @property
    def state(self) -> PipelineState:
        return PipelineState.BUSY if self._gate.busy else PipelineState.IDLE

    @property
    def is_busy(self) -> bool:
        return self._gate.busy

    def submit(self, frame: Frame) -> bool:
        """Offer a frame; returns False when it was dropped."""
        if not self._accepting or not self._gate.try_enter():
            self.perf.count_frame(admitted=False)
            self.log.debug(f"frame {frame.timestamp:.3f} dropped (busy)")
            return False
        self.perf.count_frame(admitted=True)

        t0 = time.perf_counter()
        try:
            image = self.extractor.to_image(frame)
            future = self.locator.detect(image, self.profile)
        except Exception as e:
            # Nothing was scheduled; finish the frame here
            self.log.error(f"frame conversion failed: {e}")
            self._complete(self._failed(str(e), frame.timestamp, PerformanceStats()))
            return True
        future.add_done_callback(partial(self._on_detected, frame, image, t0))
        return True

    def _on_detected(self, frame: Frame, image: np.ndarray, t0: float, future: "Future") -> None:
        stats = PerformanceStats(t_detect_ms=_ms_since(t0))
        output = None
        try:
            boxes = future.result()
            output = self._build_output(image, boxes, stats, frame.timestamp)
        except DetectionFailure as e:
            self.log.error(f"detection error: {e}")
            output = self._failed(str(e), frame.timestamp, stats, image)
        except Exception as e:
            # Faces were found but the rest of the chain broke
            self.log.error(f"frame chain failed: {e}")
            output = self._failed(str(e), frame.timestamp, stats, image, status=OutputStatus.PROCESSING_FAILED)
        finally:
            stats.t_total_ms = _ms_since(t0)
            self.perf.record(stats)
            self._complete(output if output is not None else self._failed(
                "aborted", frame.timestamp, stats, status=OutputStatus.PROCESSING_FAILED))

    def _complete(self, output: PipelineOutput) -> None:
        try:
            self.dispatcher.post(self.sink, output)
        except Exception as e:
            self.log.error(f"result dispatch failed: {e}")
        finally:
            self._gate.leave()

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop admitting frames, wait for the in-flight chain, release resources once."""
        with self._shutdown_lock:
            if self._closed:
                return
            self._closed = True
            self._accepting = False
        # Holding the slot afterwards keeps every later submit() a drop
        if not self._gate.wait_and_enter(timeout):
            self.log.warning("in-flight frame did not finish before shutdown")
        self.locator.close()
        self.classifier.close()
        if self.store is not None:
            self.store.clear()
        self.log.info(f"coordinator shut down: {self.perf.summary()}")


class StillImageAnalyzer(_FaceChain):
    """One-shot flow for still images: full color, accurate profile, no admission gate.

    Concurrent calls are simply processed; serialization of the shared
    classifier is handled by the classifier itself.
    """

    def __init__(self, locator: FaceLocator, classifier: EmotionClassifier,
                 profile: Optional[DetectionProfile] = None, logger: Optional[EventLogger] = None,
                 monitor: Optional[PerformanceMonitor] = None, store: Optional[EphemeralImageStore] = None,
                 max_image_side: int = 480):
        super().__init__(locator, classifier, profile or DetectionProfile.still(), logger, monitor, store)
        self.max_image_side = int(max_image_side)

    def prepare(self, image: np.ndarray, rotation: int = 0,
                encoding: PixelEncoding = PixelEncoding.RGB) -> np.ndarray:
        """Scale so the biggest side is max_image_side, then rotate upright."""
        h, w = image.shape[:2]
        biggest = max(h, w)
        if self.max_image_side > 0 and biggest != self.max_image_side:
            scale = self.max_image_side / float(biggest)
            size = (max(1, int(w * scale)), max(1, int(h * scale)))
            image = cv2.resize(image, size, interpolation=cv2.INTER_AREA if scale < 1.0 else cv2.INTER_LINEAR)
        return self.extractor.to_image(Frame.from_image(image, rotation=rotation, encoding=encoding))

    def analyze(self, image: np.ndarray, rotation: int = 0,
                encoding: PixelEncoding = PixelEncoding.RGB) -> PipelineOutput:
        t0 = time.perf_counter()
        timestamp = time.time()
        stats = PerformanceStats()
        upright = self.prepare(image, rotation, encoding)
        try:
            boxes = self.locator.detect(upright, self.profile).result()
        except DetectionFailure as e:
            self.log.error(f"detection error: {e}")
            return self._failed(str(e), timestamp, stats, upright)
        finally:
            stats.t_detect_ms = _ms_since(t0)
        output = self._build_output(upright, boxes, stats, timestamp)
        stats.t_total_ms = _ms_since(t0)
        self.perf.record(stats)
        return output

    def analyze_file(self, path: str, apply_exif_rotation: bool = True) -> PipelineOutput:
        image, rotation = load_still_image(path)
        return self.analyze(image, rotation=rotation if apply_exif_rotation else 0)


def load_still_image(path: str):
    """Decode an image file to RGB and read its EXIF orientation as a rotation hint."""
    from PIL import Image

    with Image.open(path) as img:
        orientation = img.getexif().get(EXIF_ORIENTATION_TAG, 1)
        rgb = np.asarray(img.convert("RGB"))
    return rgb, EXIF_ROTATION.get(int(orientation), 0)
