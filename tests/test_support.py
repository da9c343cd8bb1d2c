import os

import numpy as np

from config import Config
from emotion_app import apply_args, parse_args
from emotion_recognition import (
    BoundingBox,
    ClassificationResult,
    EphemeralImageStore,
    EventLogger,
    FaceEmotion,
    LabelScore,
    PerformanceMonitor,
    PerformanceStats,
    QueueDispatcher,
    ResultRanker,
    draw_face_overlays,
)


def test_event_logger_forwards_to_ui_and_file(tmp_path):
    lines = []
    path = tmp_path / "pipeline.log"
    log = EventLogger(name="er-test", ui_logger=lines.append, log_file_path=str(path))
    log.info("model loaded")
    log.error("detection error: boom")
    log.close()
    assert len(lines) == 2
    assert lines[0].endswith("er-test INFO: model loaded")
    assert "ERROR: detection error: boom" in lines[1]
    assert path.read_text(encoding="utf-8").splitlines() == lines


def test_event_logger_survives_broken_ui_callback():
    def broken(line):
        raise RuntimeError("widget destroyed")

    log = EventLogger(ui_logger=broken)
    log.warning("still running")


def test_store_removes_files_at_clear(tmp_path):
    store = EphemeralImageStore(str(tmp_path))
    first = store.save(np.zeros((8, 8, 3), dtype=np.uint8), tag="face1")
    second = store.save(np.zeros((8, 8, 3), dtype=np.uint8))
    assert os.path.exists(first) and os.path.exists(second)
    assert os.path.basename(first).startswith("ER_")
    store.clear()
    assert store.files == []
    assert not os.path.exists(first)
    assert os.path.isdir(str(tmp_path))


def test_store_owned_directory_is_removed():
    store = EphemeralImageStore()
    store.save(np.zeros((4, 4, 3), dtype=np.uint8))
    directory = store.directory
    store.clear()
    assert not os.path.exists(directory)


def test_monitor_counts_and_averages():
    mon = PerformanceMonitor(history_len=2)
    mon.count_frame(admitted=True)
    mon.count_frame(admitted=False)
    for total in (10.0, 20.0, 30.0):
        mon.record(PerformanceStats(t_total_ms=total))
    s = mon.summary()
    assert s["frames_submitted"] == 2
    assert s["frames_admitted"] == 1
    assert s["frames_dropped"] == 1
    assert s["avg_total_ms"] == 25.0


def test_queue_dispatcher_drains_in_order_with_limit():
    seen = []
    d = QueueDispatcher()
    for i in range(3):
        d.post(seen.append, i)
    assert d.pending() == 3
    assert d.drain(limit=2) == 2
    assert seen == [0, 1]
    assert d.drain() == 1
    assert seen == [0, 1, 2]


def test_overlay_draws_on_a_copy():
    image = np.zeros((120, 120, 3), dtype=np.uint8)
    ranked = ResultRanker.rank(ClassificationResult(scores=(LabelScore("happy", 1.0),)))
    faces = [FaceEmotion(face_index=1, box=BoundingBox(10, 10, 100, 100), ranked=ranked)]
    out = draw_face_overlays(image, faces)
    assert image.sum() == 0
    assert out[10, 50].tolist() == [0, 255, 0]


def test_cli_flags_override_config():
    args = parse_args(["--model", "m.onnx", "--labels", "l.txt", "--softmax", "--cpu", "-v",
                       "live", "--camera", "2", "--rotation", "270", "--color"])
    cfg = Config()
    apply_args(cfg, args)
    assert cfg.get('classifier', 'model_path') == "m.onnx"
    assert cfg.get('classifier', 'labels_path') == "l.txt"
    assert cfg.get('classifier', 'output_activation') == "softmax"
    assert cfg.get('classifier', 'prefer_accelerated') is False
    assert cfg.get('logging', 'level') == "DEBUG"
    assert cfg.get('video', 'capture_index') == 2
    assert cfg.get('video', 'rotation') == 270
    assert cfg.get('video', 'encoding') == "bgr"


def test_cli_image_command_keeps_defaults():
    args = parse_args(["image", "photo.jpg"])
    cfg = Config()
    apply_args(cfg, args)
    assert args.path == "photo.jpg"
    assert cfg.get('classifier', 'input_range') == "0,1"
    assert cfg.get('video', 'encoding') == "luma"


def test_store_keeps_only_the_newest_files(tmp_path):
    store = EphemeralImageStore(str(tmp_path), max_files=2)
    paths = [store.save(np.zeros((4, 4, 3), dtype=np.uint8), tag=f"face{i}") for i in range(3)]
    assert store.files == paths[1:]
    assert not os.path.exists(paths[0])
    assert os.path.exists(paths[2])
    store.clear()


def test_store_cap_comes_from_config():
    from emotion_app import build_store

    cfg = Config()
    assert build_store(cfg) is None
    cfg.set('storage', 'save_crops', True)
    store = build_store(cfg)
    assert store.max_files == 200
    store.clear()
