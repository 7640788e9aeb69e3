import cv2
import numpy as np
import onnxruntime as ort
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from sheet_corrector.core.aligner import to_gray
from sheet_corrector.core.buffers import ImageBuffer
from sheet_corrector.core.interfaces import MarkDetector
from sheet_corrector.core.models import MARK_CLASSES, BoundingBox, Detection, DetectionOutput
from sheet_corrector.utils import app_logger


def letterbox(img: np.ndarray, size: int) -> Tuple[np.ndarray, float, float, float]:
    """
    Fit `img` into a white size x size square, keeping the aspect ratio.
    Returns (canvas, scale, offset_x, offset_y).
    """
    h, w = img.shape[:2]
    scale = min(size / float(w), size / float(h))
    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    resized = cv2.resize(img, (new_w, new_h), interpolation=cv2.INTER_LINEAR)

    canvas = np.full((size, size, 3), 255, dtype=np.uint8)
    off_x = (size - new_w) / 2.0
    off_y = (size - new_h) / 2.0
    x0, y0 = int(off_x), int(off_y)
    canvas[y0:y0 + new_h, x0:x0 + new_w] = resized
    return canvas, scale, float(x0), float(y0)


def iou(a: BoundingBox, b: BoundingBox) -> float:
    x1 = max(a.x, b.x)
    y1 = max(a.y, b.y)
    x2 = min(a.x + a.width, b.x + b.width)
    y2 = min(a.y + a.height, b.y + b.height)

    inter = max(0.0, x2 - x1) * max(0.0, y2 - y1)
    union = a.width * a.height + b.width * b.height - inter
    if union <= 0:
        return 0.0
    return inter / union


def non_max_suppression(detections: List[Detection], iou_threshold: float) -> List[Detection]:
    """Greedy NMS: keep the most confident box, drop the ones overlapping it."""
    remaining = sorted(detections, key=lambda d: d.confidence, reverse=True)
    keep = []
    while remaining:
        current = remaining.pop(0)
        keep.append(current)
        remaining = [d for d in remaining if iou(current.bbox, d.bbox) < iou_threshold]
    return keep


class OnnxMarkDetector(MarkDetector):
    """
    YOLO mark detector running on onnxruntime.

    The model takes a 1x3xNxN RGB tensor in [0, 1] and outputs, per anchor,
    (cx, cy, w, h) followed by one score per class.
    """

    MODEL_PATH = "models/marks.onnx"
    INPUT_SIZE = 640
    CONFIDENCE_THRESHOLD = 0.5
    IOU_THRESHOLD = 0.4
    PROVIDERS = ["CPUExecutionProvider"]

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        cfg = config.get('detector', {})
        self.model_path = Path(cfg.get('model_path', self.MODEL_PATH))
        self.input_size = int(cfg.get('input_size', self.INPUT_SIZE))
        self.conf_threshold = float(cfg.get('confidence_threshold', self.CONFIDENCE_THRESHOLD))
        self.iou_threshold = float(cfg.get('iou_threshold', self.IOU_THRESHOLD))
        self.classes = tuple(cfg.get('classes', MARK_CLASSES))
        self.providers = list(cfg.get('providers', self.PROVIDERS))
        self.session: Optional[ort.InferenceSession] = None
        app_logger.debug(f"OnnxMarkDetector configured with model: {self.model_path}")

    def is_available(self) -> bool:
        return self.model_path.is_file()

    def initialize(self) -> None:
        if self.session is not None:
            return
        try:
            self.session = ort.InferenceSession(str(self.model_path), providers=self.providers)
            app_logger.info(f"Mark detection model loaded: {self.model_path.name}")
        except Exception as e:
            app_logger.error(f"Failed to load detection model {self.model_path}: {e}")
            raise

    def _preprocess(self, img: np.ndarray):
        if img.ndim == 2 or img.shape[2] == 1:
            img = cv2.cvtColor(to_gray(img), cv2.COLOR_GRAY2BGR)
        elif img.shape[2] == 4:
            img = cv2.cvtColor(img, cv2.COLOR_BGRA2BGR)

        canvas, scale, off_x, off_y = letterbox(img, self.input_size)
        rgb = cv2.cvtColor(canvas, cv2.COLOR_BGR2RGB).astype(np.float32) / 255.0
        tensor = np.expand_dims(np.transpose(rgb, (2, 0, 1)), axis=0)
        return tensor, scale, off_x, off_y

    def _postprocess(self, output: np.ndarray, scale: float, off_x: float, off_y: float,
                     image_size: Optional[Tuple[int, int]] = None) -> List[Detection]:
        """
        Raw model output -> detections in the frame of the original image.
        Boxes are clipped to `image_size` (width, height) when given.
        """
        preds = output[0] if output.ndim == 3 else output
        width = 4 + len(self.classes)
        # YOLOv8+ exports are (4 + classes, anchors)
        if preds.shape[0] == width and preds.shape[1] != width:
            preds = preds.T

        scores = preds[:, 4:width]
        class_ids = np.argmax(scores, axis=1)
        confidences = scores[np.arange(len(scores)), class_ids]
        keep = confidences >= self.conf_threshold
        if not np.any(keep):
            return []

        boxes = preds[keep, :4].astype(np.float32)
        class_ids = class_ids[keep]
        confidences = confidences[keep]

        # (cx, cy, w, h) in the letterbox -> corners in the original image
        x1 = (boxes[:, 0] - boxes[:, 2] / 2.0 - off_x) / scale
        y1 = (boxes[:, 1] - boxes[:, 3] / 2.0 - off_y) / scale
        x2 = (boxes[:, 0] + boxes[:, 2] / 2.0 - off_x) / scale
        y2 = (boxes[:, 1] + boxes[:, 3] / 2.0 - off_y) / scale

        max_x, max_y = (image_size if image_size is not None else (np.inf, np.inf))
        x1, x2 = np.clip(x1, 0.0, max_x), np.clip(x2, 0.0, max_x)
        y1, y2 = np.clip(y1, 0.0, max_y), np.clip(y2, 0.0, max_y)

        detections = [
            Detection(
                bbox=BoundingBox(float(x1[i]), float(y1[i]), float(x2[i] - x1[i]), float(y2[i] - y1[i])),
                confidence=float(confidences[i]),
                mark_class=self.classes[int(class_ids[i])],
            )
            for i in range(len(boxes))
            if x2[i] > x1[i] and y2[i] > y1[i]
        ]
        return non_max_suppression(detections, self.iou_threshold)

    def detect(self, image: ImageBuffer) -> DetectionOutput:
        if self.session is None:
            return DetectionOutput(False, error="Detector not initialized")

        try:
            tensor, scale, off_x, off_y = self._preprocess(image.array)
            input_name = self.session.get_inputs()[0].name
            outputs = self.session.run(None, {input_name: tensor})
            detections = self._postprocess(np.asarray(outputs[0]), scale, off_x, off_y,
                                           image_size=(image.width, image.height))
            app_logger.debug(f"Detected {len(detections)} marks in {image.label}.")
            return DetectionOutput(True, detections)

        except Exception as e:
            app_logger.error(f"Mark detection failed on {image.label}: {e}")
            return DetectionOutput(False, error=str(e))
