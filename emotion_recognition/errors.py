class EmotionRecognitionError(Exception):
    """Base class for pipeline errors."""


class ModelLoadError(EmotionRecognitionError):
    """Raised when the model or label assets are missing, unreadable or inconsistent."""


class DetectionFailure(EmotionRecognitionError):
    """Raised when the face detection engine fails internally.

    Distinct from finding no faces, which is a normal empty result.
    """


class EmptyRegion(EmotionRecognitionError):
    """Raised when a bounding box clamps to zero area."""


class InferenceError(EmotionRecognitionError):
    """Raised when the interpreter fails or returns malformed output."""


class ClassifierDisposedError(InferenceError):
    """Raised when classify is called on a classifier that is closed or not opened."""
