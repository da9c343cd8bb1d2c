from __future__ import annotations
import os
import shutil
import tempfile
import threading
import time
from typing import List, Optional

import cv2
import numpy as np


class EphemeralImageStore:
    """Scratch directory for captured images and face crops.

    Everything written here is deleted by clear(), which runs at teardown.
    At most max_files are kept; saving past the cap deletes the oldest file.
    """

    def __init__(self, directory: Optional[str] = None, prefix: str = "ER_", max_files: int = 200):
        self._owns_dir = directory is None
        self.directory = directory or tempfile.mkdtemp(prefix="emotion_recognition_")
        os.makedirs(self.directory, exist_ok=True)
        self.prefix = prefix
        self.max_files = int(max_files)
        self._files: List[str] = []
        self._lock = threading.Lock()
        self._counter = 0

    def save(self, image_rgb: np.ndarray, tag: str = "") -> str:
        with self._lock:
            self._counter += 1
            stamp = time.strftime("%Y%m%d_%H%M%S")
            name = f"{self.prefix}{stamp}_{self._counter:05d}{('_' + tag) if tag else ''}.jpg"
            path = os.path.join(self.directory, name)
            if not cv2.imwrite(path, cv2.cvtColor(image_rgb, cv2.COLOR_RGB2BGR)):
                raise OSError(f"could not write {path}")
            self._files.append(path)
            while self.max_files > 0 and len(self._files) > self.max_files:
                _remove(self._files.pop(0))
            return path

    @property
    def files(self) -> List[str]:
        with self._lock:
            return list(self._files)

    def clear(self) -> None:
        with self._lock:
            for path in self._files:
                _remove(path)
            self._files.clear()
            if self._owns_dir:
                shutil.rmtree(self.directory, ignore_errors=True)


def _remove(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
