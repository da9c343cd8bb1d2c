from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple
import time

import numpy as np


class PixelEncoding(Enum):
    """Pixel layout tag carried by a Frame."""
    LUMA = "luma"        # one HxW plane
    YUV420 = "yuv420"    # Y (HxW), U and V (H/2 x W/2) planes
    RGB = "rgb"          # one HxWx3 plane
    BGR = "bgr"          # one HxWx3 plane (OpenCV native)


class ColorProfile(Enum):
    """How a frame is turned into an image before cropping.

    LUMINANCE keeps only the Y/gray information and replicates it into three
    channels (cheap, used by the live path). FULL_COLOR keeps chrominance
    (used by the still-image path).
    """
    LUMINANCE = "luminance"
    FULL_COLOR = "full_color"


class PipelineState(Enum):
    IDLE = "idle"
    BUSY = "busy"


VALID_ROTATIONS = (0, 90, 180, 270)


@dataclass(frozen=True)
class Frame:
    """One captured image: raw planes plus orientation metadata.

    rotation is the clockwise rotation in degrees needed to make the image upright.
    """
    planes: Tuple[np.ndarray, ...]
    width: int
    height: int
    rotation: int = 0
    encoding: PixelEncoding = PixelEncoding.LUMA
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        if self.rotation not in VALID_ROTATIONS:
            raise ValueError(f"rotation must be one of {VALID_ROTATIONS}, got {self.rotation}")
        if not self.planes:
            raise ValueError("frame has no planes")

    @classmethod
    def from_image(cls, image: np.ndarray, rotation: int = 0,
                   encoding: PixelEncoding = PixelEncoding.RGB,
                   timestamp: Optional[float] = None) -> "Frame":
        """Wrap a decoded single-plane image (gray, RGB or BGR array)."""
        h, w = image.shape[:2]
        if image.ndim == 2:
            encoding = PixelEncoding.LUMA
        return cls(
            planes=(image,), width=int(w), height=int(h), rotation=int(rotation),
            encoding=encoding, timestamp=time.time() if timestamp is None else timestamp,
        )

    @property
    def upright_size(self) -> Tuple[int, int]:
        """(width, height) after rotation is applied."""
        if self.rotation in (90, 270):
            return self.height, self.width
        return self.width, self.height


@dataclass(frozen=True)
class BoundingBox:
    """Face rectangle in pixel coordinates of the upright image."""
    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    def clamp(self, width: int, height: int) -> "BoundingBox":
        """Clip the box into [0, width) x [0, height). May return an empty box."""
        return BoundingBox(
            left=max(0, self.left),
            top=max(0, self.top),
            right=min(int(width), self.right),
            bottom=min(int(height), self.bottom),
        )

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0


@dataclass(frozen=True)
class FaceRegion:
    """Cropped RGB face image tagged with its 1-based detector-order index."""
    face_index: int
    box: BoundingBox
    image: np.ndarray


@dataclass(frozen=True)
class LabelScore:
    label: str
    score: float


@dataclass(frozen=True)
class ClassificationResult:
    """Scores for one face in label-list (model output) order."""
    scores: Tuple[LabelScore, ...]

    @property
    def labels(self) -> List[str]:
        return [s.label for s in self.scores]

    def total(self) -> float:
        return float(sum(s.score for s in self.scores))

    def as_dict(self) -> Dict[str, float]:
        return {s.label: s.score for s in self.scores}


@dataclass(frozen=True)
class RankedResult:
    """Scores sorted descending; dominant is the first entry."""
    scores: Tuple[LabelScore, ...]

    @property
    def dominant(self) -> LabelScore:
        return self.scores[0]

    @property
    def dominant_label(self) -> str:
        return self.scores[0].label


@dataclass(frozen=True)
class FaceEmotion:
    """Presentation-ready result for one face."""
    face_index: int
    box: BoundingBox
    ranked: RankedResult

    @property
    def dominant_label(self) -> str:
        return self.ranked.dominant_label

    @property
    def group_name(self) -> str:
        return f"Face {self.face_index}"


class OutputStatus(Enum):
    FACES = "faces"
    NO_FACE = "no_face"
    DETECTION_FAILED = "detection_failed"
    PROCESSING_FAILED = "processing_failed"


@dataclass
class PerformanceStats:
    """Timing metrics for each stage of the pipeline."""
    t_detect_ms: float = 0.0
    t_extract_ms: float = 0.0
    t_classify_ms: float = 0.0
    t_total_ms: float = 0.0


@dataclass
class PipelineOutput:
    """Aggregated output for one frame or still image."""
    status: OutputStatus
    faces: List[FaceEmotion] = field(default_factory=list)
    timestamp: float = 0.0
    error: Optional[str] = None
    perf: PerformanceStats = field(default_factory=PerformanceStats)
    image: Optional[np.ndarray] = None  # upright RGB image the boxes refer to

    @property
    def has_faces(self) -> bool:
        return self.status is OutputStatus.FACES


@dataclass(frozen=True)
class DetectionProfile:
    """Speed/accuracy trade-off for face search.

    min_face_size is a fraction of the shorter image side; smaller faces are ignored.
    """
    name: str
    min_face_size: float
    model_selection: int
    min_detection_confidence: float = 0.5
    color: ColorProfile = ColorProfile.FULL_COLOR

    @classmethod
    def live(cls, section: Optional[dict] = None) -> "DetectionProfile":
        sec = section or {}
        return cls(
            name="live",
            min_face_size=float(sec.get('min_face_size', 0.15)),
            model_selection=int(sec.get('model_selection', 0)),
            min_detection_confidence=float(sec.get('min_detection_confidence', 0.5)),
            color=ColorProfile.LUMINANCE,
        )

    @classmethod
    def still(cls, section: Optional[dict] = None) -> "DetectionProfile":
        sec = section or {}
        return cls(
            name="still",
            min_face_size=float(sec.get('min_face_size', 0.10)),
            model_selection=int(sec.get('model_selection', 1)),
            min_detection_confidence=float(sec.get('min_detection_confidence', 0.5)),
            color=ColorProfile.FULL_COLOR,
        )
