from typing import Any, Callable, Dict, Optional
import os
import threading
import time

import cv2

from emotion_recognition.types import Frame, PixelEncoding


class CameraFrameSource:
    """OpenCV camera reader that hands timestamped Frames to a callback.

    Expects cfg keys: capture_index, width, height, encoding ('luma'|'bgr'), rotation.
    Frames are delivered one after another on a single background thread; the
    callback decides whether to keep or drop them.
    """

    def __init__(self, cfg: Dict[str, Any], on_frame: Callable[[Frame], Any]):
        self.index = int(cfg.get('capture_index', 0))
        self.width = int(cfg.get('width', 640))
        self.height = int(cfg.get('height', 480))
        self.encoding = PixelEncoding.LUMA if (cfg.get('encoding') or 'luma').lower() == 'luma' else PixelEncoding.BGR
        self.rotation = int(cfg.get('rotation', 0))
        self.on_frame = on_frame

        try:
            cv2.setUseOptimized(True)
            cv2.setNumThreads(max(2, os.cpu_count() or 2))
        except Exception:
            pass

        self.cap: Optional[cv2.VideoCapture] = None
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._fps_count = 0
        self._fps_start = time.time()
        self._fail_count = 0
        self.last_error: Optional[str] = None

    def start(self) -> bool:
        """Open the camera and start delivering frames; returns False if it cannot be opened."""
        cap = cv2.VideoCapture(self.index)
        if not cap or not cap.isOpened():
            return False
        try:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, int(self.width))
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, int(self.height))
            cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        except Exception:
            # Some backends ignore certain properties; proceed anyway
            pass
        self.cap = cap
        self._running = True
        self._thread = threading.Thread(target=self._capture_loop, name="frame-source", daemon=True)
        self._thread.start()
        return True

    def _to_frame(self, image) -> Frame:
        if self.encoding is PixelEncoding.LUMA:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        return Frame.from_image(image, rotation=self.rotation, encoding=self.encoding, timestamp=time.time())

    def _capture_loop(self):
        while self._running:
            ok, image = self.cap.read() if self.cap else (False, None)
            if not ok or image is None:
                self._fail_count += 1
                time.sleep(0.01)
                continue
            self._fail_count = 0
            self._fps_count += 1
            try:
                self.on_frame(self._to_frame(image))
            except Exception as e:
                self.last_error = str(e)

    def _current_fps(self) -> float:
        now = time.time()
        elapsed = max(1e-3, now - self._fps_start)
        fps = float(self._fps_count) / elapsed
        if elapsed >= 1.0:
            self._fps_start = now
            self._fps_count = 0
        return fps

    def get_status(self) -> Dict[str, Any]:
        return {
            'connected': bool(self.cap and self.cap.isOpened()),
            'resolution': (self.width, self.height),
            'encoding': self.encoding.value,
            'rotation': self.rotation,
            'fps_measured': self._current_fps(),
            'fail_count': self._fail_count,
            'last_error': self.last_error,
        }

    def release(self) -> None:
        self._running = False
        if self._thread:
            self._thread.join(timeout=0.5)
            self._thread = None
        if self.cap:
            self.cap.release()
            self.cap = None
