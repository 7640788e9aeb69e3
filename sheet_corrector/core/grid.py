import cv2
import numpy as np
from typing import Any, Dict, List, Optional

from sheet_corrector.utils import app_logger
from .aligner import to_gray
from .buffers import ImageBuffer
from .layout import SheetLayout
from .models import LEFT, RIGHT, SIDES, Alternative, GridGeometry, GridRow, RowMarker


class GridGeometryResolver:
    """
    Finds the question rows of both answer tables from the small square row
    markers printed beside them, and lays the alternative columns over each row.
    """

    # Row-marker area window, relative to the printed marker area
    AREA_TOLERANCE = (0.4, 2.5)
    ASPECT_RATIO_RANGE = (0.75, 1.25)
    MIN_ALTERNATIVES = 4

    def __init__(self, config: Dict[str, Any], layout: Optional[SheetLayout] = None):
        self.config = config
        self.layout = layout or SheetLayout.from_config(config)
        cfg = config.get('grid', {})
        self.area_tolerance = tuple(cfg.get('marker_area_tolerance', self.AREA_TOLERANCE))
        self.aspect_range = tuple(cfg.get('marker_aspect_ratio_range', self.ASPECT_RATIO_RANGE))
        app_logger.debug("GridGeometryResolver initialized.")

    def _strip_bounds(self, width: int, height: int, side: str):
        sx, sy = self.layout.scale_for(width, height)
        x0_mm, x1_mm = self.layout.row_strip_mm(side)
        y0_mm, y1_mm = self.layout.row_band_mm()

        x0 = max(0, int(round(x0_mm * sx)))
        x1 = min(width, int(round(x1_mm * sx)))
        y0 = max(0, int(round(y0_mm * sy)))
        y1 = min(height, int(round(y1_mm * sy)))
        return x0, x1, y0, y1

    def detect_row_markers(self, sheet: ImageBuffer, side: str) -> List[RowMarker]:
        """Row markers of one side, sorted top to bottom (absolute Y)."""
        img = sheet.array
        h, w = img.shape[:2]
        x0, x1, y0, y1 = self._strip_bounds(w, h, side)
        if x1 <= x0 or y1 <= y0:
            return []

        strip = to_gray(img[y0:y1, x0:x1])
        _, binary = cv2.threshold(strip, 0, 255, cv2.THRESH_BINARY_INV + cv2.THRESH_OTSU)
        contours, _ = cv2.findContours(binary, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        expected = self.layout.expected_row_marker_area(w, h)
        min_area = expected * self.area_tolerance[0]
        max_area = expected * self.area_tolerance[1]

        markers = []
        for c in contours:
            x, y, cw, ch = cv2.boundingRect(c)
            area = cv2.contourArea(c)
            ratio = cw / ch if ch > 0 else 0
            if not (min_area <= area <= max_area):
                continue
            if not (self.aspect_range[0] <= ratio <= self.aspect_range[1]):
                continue
            markers.append(RowMarker(y=float(y0 + y + ch / 2.0), side=side))

        markers.sort(key=lambda m: m.y)
        return markers

    def _build_rows(self, markers: List[RowMarker], side: str, first_question: int,
                    alternative_count: int, width: int, height: int) -> List[GridRow]:
        sx, sy = self.layout.scale_for(width, height)
        centers = self.layout.alternative_centers_mm(side, alternative_count)
        cell_w = self.layout.table(side).alternatives_span / float(alternative_count) * sx
        cell_h = self.layout.row_pitch * sy
        letters = [chr(ord('A') + i) for i in range(alternative_count)]

        rows = []
        for i, marker in enumerate(markers):
            alternatives = tuple(
                Alternative(letter, cx * sx, marker.y, cell_w, cell_h)
                for letter, cx in zip(letters, centers)
            )
            rows.append(GridRow(first_question + i, marker.y, side, alternatives))
        return rows

    def resolve(self, sheet: ImageBuffer, alternative_count: int = MIN_ALTERNATIVES) -> GridGeometry:
        """
        Grid of both tables. Left rows are numbered 1..L and right rows L+1..L+R.
        A side without markers yields no rows.
        """
        try:
            count = max(int(alternative_count), self.MIN_ALTERNATIVES)
            h, w = sheet.height, sheet.width

            found = {side: self.detect_row_markers(sheet, side) for side in SIDES}
            left = self._build_rows(found[LEFT], LEFT, 1, count, w, h)
            right = self._build_rows(found[RIGHT], RIGHT, len(left) + 1, count, w, h)

            grid = GridGeometry(left=left, right=right)
            app_logger.info(f"Grid resolved. Rows: {len(left)} left, {len(right)} right ({count} alternatives).")
            if grid.rows_detected == 0:
                app_logger.warning("No row markers found on the sheet.")
            return grid

        except Exception as e:
            app_logger.error(f"Error resolving grid geometry: {e}")
            raise
