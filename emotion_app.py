"""
Emotion Recognition - command line entry point
Runs the still-image flow on a file or the live flow on a camera.
"""

import argparse
import logging
import sys
import time

import cv2

from config import Config
from video_capture import CameraFrameSource
from emotion_recognition import (
    DetectionProfile,
    EmotionClassifier,
    EphemeralImageStore,
    EventLogger,
    FaceLocator,
    ModelLoadError,
    PerformanceMonitor,
    PipelineCoordinator,
    QueueDispatcher,
    ResultRanker,
    StillImageAnalyzer,
    draw_face_overlays,
)
from emotion_recognition.overlay import draw_status_text

WINDOW_NAME = "Live emotion detection"


def build_classifier(config: Config, logger: EventLogger) -> EmotionClassifier:
    section = config.get('classifier')
    return EmotionClassifier.from_files(
        section['model_path'], section['labels_path'],
        input_range=str(section.get('input_range', '0,1')),
        output_activation=str(section.get('output_activation', 'none')),
        sum_tolerance=float(section.get('sum_tolerance', 1e-3)),
        num_threads=int(section.get('num_threads', 4)),
        prefer_accelerated=bool(section.get('prefer_accelerated', True)),
        logger=logger,
    )


def build_store(config: Config):
    if not config.get('storage', 'save_crops'):
        return None
    return EphemeralImageStore(config.get('storage', 'directory'),
                               max_files=int(config.get('storage', 'max_files') or 0))


def run_image(args, config: Config, logger: EventLogger) -> int:
    classifier = build_classifier(config, logger)
    locator = FaceLocator()
    store = build_store(config)
    analyzer = StillImageAnalyzer(
        locator, classifier,
        profile=DetectionProfile.still(config.get('detection', 'still')),
        logger=logger, store=store,
        max_image_side=int(config.get('still', 'max_image_side') or 0),
    )
    try:
        output = analyzer.analyze_file(args.path, apply_exif_rotation=bool(config.get('still', 'apply_exif_rotation')))
        if output.has_faces and output.faces:
            for group, rows in ResultRanker.grouped(output.faces).items():
                print(group)
                for label, percent in rows:
                    print(f"  {label:<12} {percent:>7}")
        else:
            for line in ResultRanker.describe(output):
                print(line)
        if args.annotate and output.image is not None:
            annotated = draw_face_overlays(output.image, output.faces)
            cv2.imwrite(args.annotate, cv2.cvtColor(annotated, cv2.COLOR_RGB2BGR))
        return 0 if output.has_faces else 1
    finally:
        locator.close()
        classifier.close()
        if store is not None:
            store.clear()


def run_live(args, config: Config, logger: EventLogger) -> int:
    classifier = build_classifier(config, logger)
    dispatcher = QueueDispatcher()
    latest = {'output': None}

    def show(output):
        # Runs on the main thread via dispatcher.drain()
        latest['output'] = output

    monitor = PerformanceMonitor()
    coordinator = PipelineCoordinator(
        FaceLocator(), classifier, sink=show, dispatcher=dispatcher,
        profile=DetectionProfile.live(config.get('detection', 'live')),
        logger=logger, monitor=monitor, store=build_store(config),
    )
    source = CameraFrameSource(config.get('video'), on_frame=coordinator.submit)
    if not source.start():
        logger.error(f"cannot open camera {config.get('video', 'capture_index')}")
        coordinator.shutdown()
        return 2

    logger.info(f"backend: {classifier.backend}")
    started = time.time()
    try:
        while True:
            dispatcher.drain()
            output = latest['output']
            if output is not None and output.image is not None:
                canvas = draw_face_overlays(output.image, output.faces)
                draw_status_text(canvas, ResultRanker.describe(output))
                cv2.imshow(WINDOW_NAME, cv2.cvtColor(canvas, cv2.COLOR_RGB2BGR))
            key = cv2.waitKey(15) & 0xFF
            if key in (27, ord('q')):
                break
            if args.duration and time.time() - started > args.duration:
                break
    except KeyboardInterrupt:
        pass
    finally:
        source.release()
        coordinator.shutdown(timeout=5.0)
        cv2.destroyAllWindows()
        logger.info(f"stats: {monitor.summary()}")
    return 0


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Facial emotion recognition")
    parser.add_argument("--model", help="ONNX model file")
    parser.add_argument("--labels", help="label file, one label per line in model output order")
    parser.add_argument("--input-range", choices=["0,1", "-1,1"])
    parser.add_argument("--softmax", action="store_true", help="apply softmax to model outputs")
    parser.add_argument("--cpu", action="store_true", help="skip accelerated inference backends")
    parser.add_argument("--save-crops", action="store_true", help="keep face crops in a temp dir until exit")
    parser.add_argument("--log-file", help="append pipeline log lines to this file")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p_img = sub.add_parser("image", help="classify faces in a still image")
    p_img.add_argument("path")
    p_img.add_argument("--annotate", help="write the image with face boxes to this path")

    p_live = sub.add_parser("live", help="classify faces from a camera")
    p_live.add_argument("--camera", type=int, default=None)
    p_live.add_argument("--rotation", type=int, choices=[0, 90, 180, 270], default=None)
    p_live.add_argument("--color", action="store_true", help="send full-color frames instead of gray")
    p_live.add_argument("--duration", type=float, default=0.0, help="stop after N seconds (0 = until q)")
    return parser.parse_args(argv)


def apply_args(config: Config, args) -> None:
    if args.model:
        config.set('classifier', 'model_path', args.model)
    if args.labels:
        config.set('classifier', 'labels_path', args.labels)
    if args.input_range:
        config.set('classifier', 'input_range', args.input_range)
    if args.softmax:
        config.set('classifier', 'output_activation', 'softmax')
    if args.cpu:
        config.set('classifier', 'prefer_accelerated', False)
    if args.save_crops:
        config.set('storage', 'save_crops', True)
    if args.log_file:
        config.set('logging', 'log_file_path', args.log_file)
    if args.verbose:
        config.set('logging', 'level', 'DEBUG')
    if getattr(args, 'camera', None) is not None:
        config.set('video', 'capture_index', args.camera)
    if getattr(args, 'rotation', None) is not None:
        config.set('video', 'rotation', args.rotation)
    if getattr(args, 'color', False):
        config.set('video', 'encoding', 'bgr')


def main(argv=None) -> int:
    args = parse_args(argv)
    config = Config()
    apply_args(config, args)

    logging.basicConfig(
        level=getattr(logging, str(config.get('logging', 'level')).upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
    )
    logger = EventLogger(log_file_path=config.get('logging', 'log_file_path'))
    try:
        if args.command == "image":
            return run_image(args, config, logger)
        return run_live(args, config, logger)
    except ModelLoadError as e:
        logger.error(f"model load failed: {e}")
        return 2
    finally:
        logger.close()


if __name__ == "__main__":
    sys.exit(main())
