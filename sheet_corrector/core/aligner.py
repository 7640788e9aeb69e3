import cv2
import numpy as np
from typing import Any, Dict, List, Optional

from sheet_corrector.utils import app_logger
from .buffers import ImageBuffer
from .interfaces import AlignmentBackend
from .layout import SheetLayout
from .models import AlignmentMarkers, AlignmentResult, MarkerBox


def to_gray(img: np.ndarray) -> np.ndarray:
    """Grayscale conversion aware of the channel count."""
    if img.ndim == 2:
        return img
    channels = img.shape[2]
    if channels == 1:
        return img[:, :, 0]
    if channels == 4:
        return cv2.cvtColor(img, cv2.COLOR_BGRA2GRAY)
    return cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)


class ImageAligner(AlignmentBackend):
    """
    Geometry of the page:
    1. Binarize (gray -> blur -> adaptive threshold).
    2. Find the 3 finder markers (TL, TR, BL).
    3. Perspective transform into the canonical frame, BR corner inferred.

    Fewer than 3 markers is an expected outcome, not an error: the original
    image is handed back with success=False and the page goes on unaligned.
    """

    # Defaults (used when the config section is missing a value)
    BLUR_KERNEL = (5, 5)
    ADAPTIVE_BLOCK_SIZE = 21
    ADAPTIVE_C = 10
    MARKER_AREA_RANGE = (0.0008, 0.02)  # fraction of the image area
    MARKER_ASPECT_RATIO_RANGE = (0.75, 1.25)
    APPROX_EPSILON = 0.04

    def __init__(self, config: Dict[str, Any], layout: Optional[SheetLayout] = None):
        self.config = config
        self.layout = layout or SheetLayout.from_config(config)
        cfg = config.get('alignment', {})
        self.block_size = int(cfg.get('adaptive_block_size', self.ADAPTIVE_BLOCK_SIZE))
        self.c_value = float(cfg.get('adaptive_c', self.ADAPTIVE_C))
        self.area_range = tuple(cfg.get('marker_area_range', self.MARKER_AREA_RANGE))
        self.aspect_range = tuple(cfg.get('marker_aspect_ratio_range', self.MARKER_ASPECT_RATIO_RANGE))
        self.approx_epsilon = float(cfg.get('approx_epsilon', self.APPROX_EPSILON))
        app_logger.debug("ImageAligner initialized with config.")

    def _binarize(self, img: np.ndarray) -> np.ndarray:
        gray = to_gray(img)
        blurred = cv2.GaussianBlur(gray, self.BLUR_KERNEL, 0)
        return cv2.adaptiveThreshold(
            blurred, 255,
            cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
            cv2.THRESH_BINARY_INV,
            self.block_size,
            self.c_value,
        )

    def _find_candidates(self, binary: np.ndarray) -> List[MarkerBox]:
        contours, _ = cv2.findContours(binary, cv2.RETR_TREE, cv2.CHAIN_APPROX_SIMPLE)

        img_h, img_w = binary.shape[:2]
        total_area = float(img_w * img_h)
        min_area = self.area_range[0] * total_area
        max_area = self.area_range[1] * total_area

        candidates = []
        for cnt in contours:
            peri = cv2.arcLength(cnt, True)
            approx = cv2.approxPolyDP(cnt, self.approx_epsilon * peri, True)

            # 1. Quadrilateral only
            if len(approx) != 4:
                continue

            # 2. Size window calibrated on the printed marker
            area = cv2.contourArea(approx)
            if not (min_area < area < max_area):
                continue

            # 3. Near-square bounding box
            x, y, w, h = cv2.boundingRect(approx)
            aspect_ratio = w / float(h) if h > 0 else 0.0
            if not (self.aspect_range[0] <= aspect_ratio <= self.aspect_range[1]):
                continue

            candidates.append(MarkerBox(x + w / 2.0, y + h / 2.0, float(w), float(h), float(area)))

        return self._drop_nested(candidates)

    @staticmethod
    def _drop_nested(candidates: List[MarkerBox]) -> List[MarkerBox]:
        """Rings of one concentric marker collapse into the outermost square."""
        kept: List[MarkerBox] = []
        for cand in sorted(candidates, key=lambda m: m.area, reverse=True):
            inside = any(
                abs(cand.x - big.x) < big.width / 2.0 and abs(cand.y - big.y) < big.height / 2.0
                for big in kept
            )
            if not inside:
                kept.append(cand)
        return kept

    def detect_markers(self, img: np.ndarray) -> AlignmentMarkers:
        binary = self._binarize(img)
        try:
            candidates = self._find_candidates(binary)
        finally:
            del binary

        app_logger.debug(f"Finder marker candidates: {len(candidates)}")
        if len(candidates) < 3:
            # Keep what was found, ordered as well as possible, for the debug overlay
            by_y = sorted(candidates, key=lambda m: m.y)
            top = sorted(by_y[:2], key=lambda m: m.x)
            return AlignmentMarkers(
                top_left=top[0] if len(top) > 0 else None,
                top_right=top[1] if len(top) > 1 else None,
            )

        # The three largest, then ordered: two lowest-Y by X are TL/TR, lowest-X of the rest is BL
        corners = sorted(candidates, key=lambda m: m.area, reverse=True)[:3]
        corners.sort(key=lambda m: m.y)
        top_left, top_right = sorted(corners[:2], key=lambda m: m.x)
        bottom_left = min(corners[2:], key=lambda m: m.x)

        app_logger.debug(
            f"Markers ordered. TL=({top_left.x:.0f},{top_left.y:.0f}) "
            f"TR=({top_right.x:.0f},{top_right.y:.0f}) BL=({bottom_left.x:.0f},{bottom_left.y:.0f})"
        )
        return AlignmentMarkers(top_left, top_right, bottom_left)

    def compute_transform(self, markers: AlignmentMarkers) -> np.ndarray:
        """3x3 perspective matrix from the scan into the canonical frame."""
        tl, tr, bl = markers.top_left, markers.top_right, markers.bottom_left
        br = markers.bottom_right

        src_pts = np.float32([
            [tl.x, tl.y],
            [tr.x, tr.y],
            [br[0], br[1]],
            [bl.x, bl.y],
        ])

        dst = self.layout.canonical_finder_centers()
        dst_pts = np.float32([
            dst['top_left'],
            dst['top_right'],
            [dst['top_right'][0], dst['bottom_left'][1]],
            dst['bottom_left'],
        ])
        return cv2.getPerspectiveTransform(src_pts, dst_pts)

    def align(self, image: ImageBuffer) -> AlignmentResult:
        """
        Main entry: page image -> AlignmentResult.

        On success the returned sheet always has the canonical size, whatever
        the size or orientation of the input.
        """
        img = image.array
        h, w = img.shape[:2]
        app_logger.debug(f"Aligning page. Input size: {w}x{h}")

        try:
            markers = self.detect_markers(img)

            if not markers.complete:
                error = f"Only {markers.found} of 3 alignment markers found"
                app_logger.warning(f"Alignment degraded: {error}.")
                return AlignmentResult(image.view("unaligned"), markers, False, error)

            matrix = self.compute_transform(markers)
            warped = cv2.warpPerspective(
                img, matrix, self.layout.canonical_size,
                flags=cv2.INTER_LINEAR,
                borderMode=cv2.BORDER_CONSTANT,
                borderValue=(255, 255, 255, 255),
            )
            app_logger.debug("Warping completed successfully.")
            return AlignmentResult(ImageBuffer(warped, "aligned"), markers, True)

        except Exception as e:
            app_logger.error(f"Error during alignment: {e}")
            raise
