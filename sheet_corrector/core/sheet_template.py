import cv2
import numpy as np
from typing import Dict, Optional, Tuple

from .layout import SheetLayout
from .models import LEFT, RIGHT

BLACK = (0, 0, 0)
WHITE = (255, 255, 255)
GRID_GRAY = (150, 150, 150)


def row_center_mm(layout: SheetLayout, row_index: int) -> float:
    """Vertical centre of body row `row_index` (0-based); the header row comes first."""
    return layout.tables_top + layout.row_pitch * (row_index + 1.5)


def _rect_mm(img: np.ndarray, scale: Tuple[float, float], x: float, y: float, w: float, h: float,
             color, thickness: int = -1) -> None:
    sx, sy = scale
    p1 = (int(round(x * sx)), int(round(y * sy)))
    p2 = (int(round((x + w) * sx)) - 1, int(round((y + h) * sy)) - 1)
    cv2.rectangle(img, p1, p2, color, thickness)


def _draw_finder(img: np.ndarray, layout: SheetLayout, scale: Tuple[float, float], x: float, y: float) -> None:
    s = layout.finder_size
    ring = layout.finder_ring
    core = layout.finder_core_inset
    _rect_mm(img, scale, x, y, s, s, BLACK)
    _rect_mm(img, scale, x + ring, y + ring, s - 2 * ring, s - 2 * ring, WHITE)
    _rect_mm(img, scale, x + core, y + core, s - 2 * core, s - 2 * core, BLACK)


def render_sheet(layout: SheetLayout,
                 left_rows: int,
                 right_rows: int = 0,
                 alternative_count: int = 4,
                 marks: Optional[Dict[int, str]] = None,
                 size: Optional[Tuple[int, int]] = None) -> np.ndarray:
    """
    Draw the printed geometry of an answer sheet as a BGR image.

    Finder markers, table outlines and row markers follow the layout contract
    exactly; `marks` ({question: letters}) fills the corresponding cells the
    way a student would. Used for previews and for exercising the pipeline
    on synthetic pages.
    """
    width, height = size or layout.canonical_size
    img = np.full((height, width, 3), 255, dtype=np.uint8)
    scale = layout.scale_for(width, height)
    sx, sy = scale
    marks = marks or {}

    # 1. Finder markers (TL, TR, BL)
    off = layout.finder_offset
    far_x = layout.page_width - off - layout.finder_size
    far_y = layout.page_height - off - layout.finder_size
    for x, y in ((off, off), (far_x, off), (off, far_y)):
        _draw_finder(img, layout, scale, x, y)

    # 2. Tables, row markers and student marks
    question = 1
    for side, rows in ((LEFT, left_rows), (RIGHT, right_rows)):
        if rows <= 0:
            continue
        table = layout.table(side)
        top = layout.tables_top
        bottom = top + layout.row_pitch * (rows + 1)
        _rect_mm(img, scale, table.start_x, top, table.end_x - table.start_x, bottom - top, GRID_GRAY, 1)

        centers = layout.alternative_centers_mm(side, alternative_count)
        cell_w = table.alternatives_span / float(alternative_count)
        marker_x = layout.row_marker_x_mm(side)
        letters = [chr(ord('A') + i) for i in range(alternative_count)]

        for r in range(rows):
            cy = row_center_mm(layout, r)
            line_y = int(round((cy - layout.row_pitch / 2.0) * sy))
            cv2.line(img, (int(table.start_x * sx), line_y), (int(table.end_x * sx), line_y), GRID_GRAY, 1)

            half = layout.row_marker_size / 2.0
            _rect_mm(img, scale, marker_x, cy - half, layout.row_marker_size, layout.row_marker_size, BLACK)

            for letter in marks.get(question, ""):
                if letter not in letters:
                    continue
                cx = centers[letters.index(letter)]
                radius = int(min(cell_w, layout.row_pitch) * 0.3 * sx)
                cv2.circle(img, (int(round(cx * sx)), int(round(cy * sy))), radius, BLACK, -1)
            question += 1

    return img
