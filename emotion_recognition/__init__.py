"""
emotion_recognition package
Face detection → region extraction → emotion classification → ranking,
for live camera frames and still images.
"""

from .types import (
    BoundingBox,
    ClassificationResult,
    ColorProfile,
    DetectionProfile,
    FaceEmotion,
    FaceRegion,
    Frame,
    LabelScore,
    OutputStatus,
    PerformanceStats,
    PipelineOutput,
    PipelineState,
    PixelEncoding,
    RankedResult,
)
from .errors import (
    EmotionRecognitionError,
    ModelLoadError,
    DetectionFailure,
    EmptyRegion,
    InferenceError,
    ClassifierDisposedError,
)
from .logger import EventLogger
from .detection import IFaceEngine, MediaPipeFaceEngine, FaceLocator
from .regions import RegionExtractor
from .classifier import EmotionClassifier, IInferenceEngine, OnnxRuntimeEngine, load_labels, load_model_buffer
from .ranking import ResultRanker
from .dispatch import ImmediateDispatcher, QueueDispatcher
from .monitor import PerformanceMonitor
from .storage import EphemeralImageStore
from .overlay import draw_face_overlays
from .pipeline import PipelineCoordinator, StillImageAnalyzer

__all__ = [
    "BoundingBox",
    "ClassificationResult",
    "ColorProfile",
    "DetectionProfile",
    "FaceEmotion",
    "FaceRegion",
    "Frame",
    "LabelScore",
    "OutputStatus",
    "PerformanceStats",
    "PipelineOutput",
    "PipelineState",
    "PixelEncoding",
    "RankedResult",
    "EmotionRecognitionError",
    "ModelLoadError",
    "DetectionFailure",
    "EmptyRegion",
    "InferenceError",
    "ClassifierDisposedError",
    "EventLogger",
    "IFaceEngine",
    "MediaPipeFaceEngine",
    "FaceLocator",
    "RegionExtractor",
    "EmotionClassifier",
    "IInferenceEngine",
    "OnnxRuntimeEngine",
    "load_labels",
    "load_model_buffer",
    "ResultRanker",
    "ImmediateDispatcher",
    "QueueDispatcher",
    "PerformanceMonitor",
    "EphemeralImageStore",
    "draw_face_overlays",
    "PipelineCoordinator",
    "StillImageAnalyzer",
]
