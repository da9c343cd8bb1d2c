from typing import Any, Dict


class Config:
    """Minimal config shim providing nested dict access via get/set.

    Defaults chosen to run the live and still-image flows out of the box
    once model and label paths are set.
    """

    def __init__(self):
        self._cfg: Dict[str, Dict[str, Any]] = {
            'video': {
                'capture_index': 0,
                'width': 640,
                'height': 480,
                # 'luma' hands the camera's gray plane to the pipeline, 'bgr' the full image
                'encoding': 'luma',
                # Clockwise degrees needed to make camera frames upright
                'rotation': 0,
            },
            'detection': {
                # Live: fast short-range model, coarse minimum face size
                'live': {
                    'min_face_size': 0.15,
                    'model_selection': 0,
                    'min_detection_confidence': 0.5,
                },
                # Still images: full-range model, smaller faces accepted
                'still': {
                    'min_face_size': 0.10,
                    'model_selection': 1,
                    'min_detection_confidence': 0.5,
                },
            },
            'classifier': {
                'model_path': 'simple_classifier.onnx',
                'labels_path': 'labels.txt',
                'input_range': '0,1',      # or '-1,1'
                'output_activation': 'none',  # or 'softmax' for models that emit logits
                'sum_tolerance': 1e-3,
                'num_threads': 4,
                'prefer_accelerated': True,
            },
            'still': {
                'max_image_side': 480,
                'apply_exif_rotation': True,
            },
            'storage': {
                'save_crops': False,
                'directory': None,
                # Oldest crops are deleted past this count
                'max_files': 200,
            },
            'logging': {
                'level': 'INFO',
                'log_file_path': None,
            },
        }

    def get(self, section: str, key: str = None):
        sec = self._cfg.get(section, {})
        if key is None:
            return sec
        return sec.get(key)

    def set(self, section: str, key: str, value: Any) -> None:
        self._cfg.setdefault(section, {})[key] = value
