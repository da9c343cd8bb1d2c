import threading
import time

import numpy as np
import pytest

from emotion_recognition import (
    BoundingBox,
    ClassifierDisposedError,
    EmotionClassifier,
    FaceRegion,
    IInferenceEngine,
    InferenceError,
    ModelLoadError,
    load_labels,
    load_model_buffer,
)

LABELS = ["happy", "neutral", "sad"]


class FakeEngine(IInferenceEngine):
    backend = "fake"

    def __init__(self, outputs, input_shape=(1, 48, 48, 1), output_size=None):
        self.outputs = list(outputs)
        self._input_shape = tuple(input_shape)
        self._output_size = len(self.outputs) if output_size is None else output_size
        self.tensors = []
        self.closed = False

    @property
    def input_shape(self):
        return self._input_shape

    @property
    def output_size(self):
        return self._output_size

    def run(self, tensor):
        self.tensors.append(tensor)
        return np.array([self.outputs], dtype=np.float32)

    def close(self):
        self.closed = True


def make_classifier(engine, **kwargs):
    return EmotionClassifier(engine_factory=lambda model_bytes, **kw: engine, **kwargs)


def face(value=128, size=(60, 50)):
    img = np.full((size[0], size[1], 3), value, dtype=np.uint8)
    return FaceRegion(face_index=1, box=BoundingBox(0, 0, size[1], size[0]), image=img)


def test_label_count_mismatch_fails_at_open():
    engine = FakeEngine([0.5, 0.5])
    clf = make_classifier(engine)
    with pytest.raises(ModelLoadError):
        clf.open(b"model", LABELS)
    assert engine.closed is True
    assert clf.is_open is False


def test_engine_init_failure_is_model_load_error():
    def broken(model_bytes, **kwargs):
        raise RuntimeError("bad graph")
    clf = EmotionClassifier(engine_factory=broken)
    with pytest.raises(ModelLoadError):
        clf.open(b"model", LABELS)


def test_dynamic_input_shape_is_rejected():
    clf = make_classifier(FakeEngine([0.2, 0.3, 0.5], input_shape=(1, "h", "w", 3)))
    with pytest.raises(ModelLoadError):
        clf.open(b"model", LABELS)


def test_scores_follow_label_order():
    clf = make_classifier(FakeEngine([0.1, 0.7, 0.2])).open(b"model", LABELS)
    result = clf.classify(face())
    assert result.labels == LABELS
    assert [s.score for s in result.scores] == pytest.approx([0.1, 0.7, 0.2], abs=1e-6)
    assert len(result.scores) == len(LABELS)


def test_unnormalized_output_is_renormalized():
    clf = make_classifier(FakeEngine([2.0, 1.0, 1.0])).open(b"model", LABELS)
    result = clf.classify(face())
    assert [s.score for s in result.scores] == pytest.approx([0.5, 0.25, 0.25])
    assert result.total() == pytest.approx(1.0, abs=1e-3)


def test_softmax_activation_for_logit_models():
    clf = make_classifier(FakeEngine([1.0, 1.0, 1.0]), output_activation="softmax").open(b"model", LABELS)
    result = clf.classify(face())
    assert [s.score for s in result.scores] == pytest.approx([1 / 3, 1 / 3, 1 / 3])


@pytest.mark.parametrize("outputs", [[-0.5, 1.0, 0.5], [0.0, 0.0, 0.0], [float("nan"), 0.5, 0.5]])
def test_malformed_output_raises_inference_error(outputs):
    clf = make_classifier(FakeEngine(outputs)).open(b"model", LABELS)
    with pytest.raises(InferenceError):
        clf.classify(face())


def test_output_width_differs_at_runtime():
    engine = FakeEngine([0.25, 0.25, 0.25, 0.25], output_size=3)
    clf = make_classifier(engine).open(b"model", LABELS)
    with pytest.raises(InferenceError):
        clf.classify(face())


def test_preprocess_resizes_and_scales_nhwc_gray():
    engine = FakeEngine([0.2, 0.3, 0.5], input_shape=(1, 48, 48, 1))
    clf = make_classifier(engine).open(b"model", LABELS)
    clf.classify(face(value=255))
    tensor = engine.tensors[-1]
    assert tensor.shape == (1, 48, 48, 1)
    assert tensor.dtype == np.float32
    assert float(tensor.max()) == pytest.approx(1.0)


def test_preprocess_nchw_color_minus_one_to_one():
    engine = FakeEngine([0.2, 0.3, 0.5], input_shape=(1, 3, 64, 64))
    clf = make_classifier(engine, input_range="-1,1").open(b"model", LABELS)
    clf.classify(face(value=0))
    tensor = engine.tensors[-1]
    assert tensor.shape == (1, 3, 64, 64)
    assert float(tensor.min()) == pytest.approx(-1.0)
    assert float(tensor.max()) == pytest.approx(-1.0)


def test_invalid_input_range_is_rejected():
    with pytest.raises(ValueError):
        EmotionClassifier(input_range="0,255")


def test_classify_after_close_fails_fast():
    engine = FakeEngine([0.2, 0.3, 0.5])
    clf = make_classifier(engine).open(b"model", LABELS)
    clf.close()
    assert engine.closed is True
    with pytest.raises(ClassifierDisposedError):
        clf.classify(face())
    # Closing twice is harmless
    clf.close()


def test_classify_before_open_fails_fast():
    with pytest.raises(ClassifierDisposedError):
        EmotionClassifier().classify(face())


def test_inference_is_serialized():
    state = {"active": 0, "max": 0}
    lock = threading.Lock()

    class SlowEngine(FakeEngine):
        def run(self, tensor):
            with lock:
                state["active"] += 1
                state["max"] = max(state["max"], state["active"])
            time.sleep(0.005)
            with lock:
                state["active"] -= 1
            return super().run(tensor)

    clf = make_classifier(SlowEngine([0.2, 0.3, 0.5])).open(b"model", LABELS)
    threads = [threading.Thread(target=clf.classify, args=(face(),)) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert state["max"] == 1


def test_from_files_maps_model_and_reads_labels(tmp_path):
    model = tmp_path / "model.onnx"
    model.write_bytes(b"\x08\x01graph-bytes")
    labels = tmp_path / "labels.txt"
    labels.write_text("happy\nneutral\n\nsad\n", encoding="utf-8")
    seen = {}

    def factory(model_bytes, **kwargs):
        seen["bytes"] = bytes(model_bytes)
        seen["threads"] = kwargs["num_threads"]
        return FakeEngine([0.2, 0.3, 0.5])

    clf = EmotionClassifier.from_files(str(model), str(labels), engine_factory=factory, num_threads=2)
    assert seen == {"bytes": b"\x08\x01graph-bytes", "threads": 2}
    assert clf.labels == LABELS
    assert clf.backend == "fake"
    clf.close()
    assert clf.backend is None


def test_missing_assets_raise_model_load_error(tmp_path):
    with pytest.raises(ModelLoadError):
        load_model_buffer(str(tmp_path / "missing.onnx"))
    empty = tmp_path / "empty.onnx"
    empty.write_bytes(b"")
    with pytest.raises(ModelLoadError):
        load_model_buffer(str(empty))
    blank = tmp_path / "labels.txt"
    blank.write_text("\n\n", encoding="utf-8")
    with pytest.raises(ModelLoadError):
        load_labels(str(blank))


@pytest.mark.parametrize("raw", [[[0.1], [0.2, 0.7]], [["a", "b", "c"]], None])
def test_unparseable_output_raises_inference_error(raw):
    class OddEngine(FakeEngine):
        def run(self, tensor):
            return raw

    clf = make_classifier(OddEngine([0.2, 0.3, 0.5])).open(b"model", LABELS)
    with pytest.raises(InferenceError):
        clf.classify(face())


def test_disposed_check_comes_before_input_checks():
    clf = make_classifier(FakeEngine([0.2, 0.3, 0.5])).open(b"model", LABELS)
    clf.close()
    with pytest.raises(ClassifierDisposedError):
        clf.classify(np.zeros((0, 0, 3), dtype=np.uint8))


def test_empty_image_on_open_classifier_is_inference_error():
    clf = make_classifier(FakeEngine([0.2, 0.3, 0.5])).open(b"model", LABELS)
    with pytest.raises(InferenceError) as err:
        clf.classify(np.zeros((0, 0, 3), dtype=np.uint8))
    assert not isinstance(err.value, ClassifierDisposedError)


def test_reopen_releases_previous_engine_and_model_buffer(tmp_path):
    model = tmp_path / "model.onnx"
    model.write_bytes(b"graph")
    first_engine = FakeEngine([0.2, 0.3, 0.5])
    second_engine = FakeEngine([0.2, 0.3, 0.5])
    engines = iter([first_engine, second_engine])
    clf = EmotionClassifier(engine_factory=lambda model_bytes, **kw: next(engines))

    first_buf = load_model_buffer(str(model))
    second_buf = load_model_buffer(str(model))
    clf.open(first_buf, LABELS)
    clf.open(second_buf, LABELS)
    assert first_engine.closed is True
    assert first_buf.closed is True
    assert second_buf.closed is False
    clf.close()
    assert second_buf.closed is True
