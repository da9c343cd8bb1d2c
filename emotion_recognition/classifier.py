"""
Emotion classifier
Owns the inference engine, the label set and the pre/post-processing around it.
"""

from __future__ import annotations
import mmap
import os
import threading
from typing import Callable, List, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from .types import ClassificationResult, FaceRegion, LabelScore
from .errors import ClassifierDisposedError, InferenceError, ModelLoadError


ACCELERATED_PROVIDERS = ("CUDAExecutionProvider", "CoreMLExecutionProvider", "DmlExecutionProvider")
CPU_PROVIDER = "CPUExecutionProvider"

INPUT_RANGES = {
    "0,1": (0.0, 1.0),
    "-1,1": (-1.0, 1.0),
}


def load_model_buffer(model_path: str) -> mmap.mmap:
    """Memory-map a model file read-only."""
    try:
        with open(model_path, "rb") as fh:
            if os.fstat(fh.fileno()).st_size == 0:
                raise ModelLoadError(f"model file is empty: {model_path}")
            return mmap.mmap(fh.fileno(), 0, access=mmap.ACCESS_READ)
    except OSError as e:
        raise ModelLoadError(f"cannot map model {model_path}: {e}") from e


def load_labels(labels_path: str) -> List[str]:
    """Read one label per line, skipping blank lines."""
    try:
        with open(labels_path, "r", encoding="utf-8") as fh:
            labels = [line.strip() for line in fh if line.strip()]
    except OSError as e:
        raise ModelLoadError(f"cannot read labels {labels_path}: {e}") from e
    if not labels:
        raise ModelLoadError(f"label file has no labels: {labels_path}")
    return labels


class IInferenceEngine:
    """Interface for a loaded model.

    input_shape includes the batch dimension, e.g. (1, 48, 48, 1) or (1, 3, 64, 64).
    """

    backend: str = "unknown"

    @property
    def input_shape(self) -> Tuple[int, ...]:
        raise NotImplementedError

    @property
    def output_size(self) -> int:
        raise NotImplementedError

    def run(self, tensor: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def close(self) -> None:
        pass


class OnnxRuntimeEngine(IInferenceEngine):
    """ONNX Runtime session with accelerated-provider selection.

    Tries the first available accelerated provider and falls back to the CPU
    provider when the accelerated session cannot be created. `backend` records
    the provider that ended up active.
    """

    def __init__(self, model_bytes, num_threads: int = 4, prefer_accelerated: bool = True, logger=None):
        import onnxruntime as ort

        self.log = logger
        data = model_bytes if isinstance(model_bytes, bytes) else bytes(model_bytes)
        opts = ort.SessionOptions()
        opts.intra_op_num_threads = max(1, int(num_threads))

        self._session = None
        if prefer_accelerated:
            available = set(ort.get_available_providers())
            for provider in ACCELERATED_PROVIDERS:
                if provider not in available:
                    continue
                try:
                    self._session = ort.InferenceSession(data, sess_options=opts, providers=[provider, CPU_PROVIDER])
                    break
                except Exception as e:
                    if self.log:
                        self.log.warning(f"{provider} init failed, falling back: {e}")
                    self._session = None
        if self._session is None:
            try:
                self._session = ort.InferenceSession(data, sess_options=opts, providers=[CPU_PROVIDER])
            except Exception as e:
                raise ModelLoadError(f"cannot create inference session: {e}") from e

        self.backend = self._session.get_providers()[0]
        inp = self._session.get_inputs()[0]
        self._input_name = inp.name
        self._input_shape = tuple(inp.shape)
        self._output_shape = tuple(self._session.get_outputs()[0].shape)

    @property
    def input_shape(self) -> Tuple[int, ...]:
        # Dynamic batch dimension is always fed as 1
        return (1,) + tuple(self._input_shape[1:])

    @property
    def output_size(self) -> int:
        dim = self._output_shape[-1]
        if not isinstance(dim, int):
            raise ModelLoadError(f"model output width is not fixed: {self._output_shape}")
        return dim

    def run(self, tensor: np.ndarray) -> np.ndarray:
        return self._session.run(None, {self._input_name: tensor})[0]

    def close(self) -> None:
        self._session = None


EngineFactory = Callable[..., IInferenceEngine]


class EmotionClassifier:
    """Single shared classifier instance.

    - open(): builds the engine, checks label count against output width
    - classify(): resize + scale, run, pair scores with labels, renormalize
    - close(): releases engine and model buffer; later calls fail fast

    The engine is not reentrant, so classify() runs under a lock.
    """

    def __init__(self, engine_factory: Optional[EngineFactory] = None, input_range: str = "0,1",
                 output_activation: str = "none", sum_tolerance: float = 1e-3,
                 num_threads: int = 4, prefer_accelerated: bool = True, logger=None):
        if input_range not in INPUT_RANGES:
            raise ValueError(f"input_range must be one of {sorted(INPUT_RANGES)}, got {input_range!r}")
        if output_activation not in ("none", "softmax"):
            raise ValueError(f"output_activation must be 'none' or 'softmax', got {output_activation!r}")
        self._engine_factory = engine_factory or OnnxRuntimeEngine
        self.input_range = INPUT_RANGES[input_range]
        self.output_activation = output_activation
        self.sum_tolerance = float(sum_tolerance)
        self.num_threads = int(num_threads)
        self.prefer_accelerated = bool(prefer_accelerated)
        self.log = logger

        self._lock = threading.Lock()
        self._engine: Optional[IInferenceEngine] = None
        self._model_buffer = None
        self._labels: List[str] = []
        self._layout = "NHWC"
        self._size = (0, 0)
        self._channels = 3

    # --- Lifecycle ---
    def open(self, model_bytes, labels: Sequence[str]) -> "EmotionClassifier":
        labels = [str(label) for label in labels]
        if not labels:
            raise ModelLoadError("label list is empty")
        try:
            engine = self._engine_factory(
                model_bytes, num_threads=self.num_threads,
                prefer_accelerated=self.prefer_accelerated, logger=self.log,
            )
        except ModelLoadError:
            raise
        except Exception as e:
            raise ModelLoadError(f"cannot initialize inference engine: {e}") from e

        try:
            out_size = int(engine.output_size)
            if out_size != len(labels):
                raise ModelLoadError(f"model outputs {out_size} scores but {len(labels)} labels were given")
            layout, size, channels = self._parse_input_shape(engine.input_shape)
        except ModelLoadError:
            engine.close()
            raise

        with self._lock:
            old_engine, old_buf = self._engine, self._model_buffer
            self._engine = engine
            self._model_buffer = model_bytes
            self._labels = labels
            self._layout, self._size, self._channels = layout, size, channels
        if old_engine is not None:
            old_engine.close()
        if isinstance(old_buf, mmap.mmap) and old_buf is not model_bytes:
            old_buf.close()
        if self.log:
            self.log.info(f"classifier opened: backend={engine.backend} input={size[0]}x{size[1]}x{channels} "
                          f"labels={len(labels)}")
        return self

    @classmethod
    def from_files(cls, model_path: str, labels_path: str, **kwargs) -> "EmotionClassifier":
        buf = load_model_buffer(model_path)
        try:
            return cls(**kwargs).open(buf, load_labels(labels_path))
        except Exception:
            buf.close()
            raise

    def close(self) -> None:
        with self._lock:
            engine, buf = self._engine, self._model_buffer
            self._engine = None
            self._model_buffer = None
        if engine is None:
            return
        engine.close()
        if isinstance(buf, mmap.mmap):
            buf.close()
        if self.log:
            self.log.info("classifier closed")

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def labels(self) -> List[str]:
        return list(self._labels)

    @property
    def backend(self) -> Optional[str]:
        engine = self._engine
        return engine.backend if engine is not None else None

    # --- Processing helpers ---
    @staticmethod
    def _parse_input_shape(shape: Sequence) -> Tuple[str, Tuple[int, int], int]:
        dims = tuple(shape)
        if not all(isinstance(d, int) and d > 0 for d in dims[1:]):
            raise ModelLoadError(f"model input dims must be fixed, got {dims}")
        if len(dims) == 3:
            return "NHW", (dims[1], dims[2]), 1
        if len(dims) == 4:
            if dims[3] in (1, 3):
                return "NHWC", (dims[1], dims[2]), dims[3]
            if dims[1] in (1, 3):
                return "NCHW", (dims[2], dims[3]), dims[1]
        raise ModelLoadError(f"unsupported model input shape {dims}")

    def _preprocess(self, image: np.ndarray) -> np.ndarray:
        h, w = self._size
        resized = cv2.resize(image, (w, h), interpolation=cv2.INTER_LINEAR)
        if self._channels == 1 and resized.ndim == 3:
            resized = cv2.cvtColor(resized, cv2.COLOR_RGB2GRAY)
        elif self._channels == 3 and resized.ndim == 2:
            resized = cv2.cvtColor(resized, cv2.COLOR_GRAY2RGB)
        lo, hi = self.input_range
        x = resized.astype(np.float32) / 255.0 * (hi - lo) + lo
        if self._layout == "NHW":
            return x[np.newaxis]
        if x.ndim == 2:
            x = x[:, :, np.newaxis]
        if self._layout == "NCHW":
            x = x.transpose(2, 0, 1)
        return x[np.newaxis]

    def _postprocess(self, raw) -> np.ndarray:
        try:
            scores = np.asarray(raw, dtype=np.float64).reshape(-1)
        except (TypeError, ValueError) as e:
            raise InferenceError(f"malformed model output: {e}") from e
        if scores.size != len(self._labels):
            raise InferenceError(f"model returned {scores.size} scores for {len(self._labels)} labels")
        if self.output_activation == "softmax":
            shifted = np.exp(scores - np.max(scores))
            scores = shifted / shifted.sum()
        if not np.all(np.isfinite(scores)) or np.any(scores < 0.0):
            raise InferenceError(f"malformed model output: {scores.tolist()}")
        total = float(scores.sum())
        if total <= 0.0:
            raise InferenceError("model output sums to zero")
        if abs(total - 1.0) > self.sum_tolerance:
            scores = scores / total
        return scores

    def classify(self, region: Union[FaceRegion, np.ndarray]) -> ClassificationResult:
        image = region.image if isinstance(region, FaceRegion) else region
        with self._lock:
            if self._engine is None:
                raise ClassifierDisposedError("classifier is disposed or was never opened")
            if image is None or image.size == 0:
                raise InferenceError("empty face image")
            try:
                tensor = self._preprocess(np.asarray(image))
            except (cv2.error, TypeError, ValueError) as e:
                raise InferenceError(f"cannot prepare face image: {e}") from e
            try:
                raw = self._engine.run(tensor)
            except Exception as e:
                raise InferenceError(f"interpreter failed: {e}") from e
            scores = self._postprocess(raw)
            labels = self._labels
        return ClassificationResult(scores=tuple(
            LabelScore(label=label, score=float(s)) for label, s in zip(labels, scores)
        ))
