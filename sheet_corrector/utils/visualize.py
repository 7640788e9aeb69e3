"""
Debug overlays: the intermediate results of the pipeline drawn on copies of
the images (the inputs are never modified).
"""

import cv2
import numpy as np
from typing import Dict, Sequence, Tuple

from sheet_corrector.core.models import AlignmentMarkers, Answer, Detection, GridGeometry, MarkerBox

Color = Tuple[int, int, int]

MARKER_COLORS: Dict[str, Color] = {
    'TL': (0, 255, 0),
    'TR': (255, 0, 0),
    'BL': (0, 0, 255),
}

CLASS_COLORS: Dict[str, Color] = {
    'mark_X': (0, 0, 255),
    'mark_circle': (0, 200, 0),
    'mark_line': (255, 128, 0),
    'mark_check': (200, 0, 200),
}

GRID_COLOR: Color = (0, 255, 0)
SELECTED_COLOR: Color = (0, 200, 0)
MULTIPLE_COLOR: Color = (0, 165, 255)


def _to_bgr(img: np.ndarray) -> np.ndarray:
    if img.ndim == 2:
        return cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)
    if img.shape[2] == 4:
        return cv2.cvtColor(img, cv2.COLOR_BGRA2BGR)
    return img.copy()


def _draw_marker(img: np.ndarray, marker: MarkerBox, color: Color, label: str) -> None:
    p1 = (int(marker.x - marker.width / 2), int(marker.y - marker.height / 2))
    p2 = (int(marker.x + marker.width / 2), int(marker.y + marker.height / 2))
    cv2.rectangle(img, p1, p2, color, 4)
    cv2.circle(img, (int(marker.x), int(marker.y)), 5, color, -1)
    cv2.putText(img, label, (int(marker.x - 20), int(p1[1] - 10)),
                cv2.FONT_HERSHEY_SIMPLEX, 0.8, color, 2)


def draw_markers(image: np.ndarray, markers: AlignmentMarkers) -> np.ndarray:
    """Finder markers on the original page: TL green, TR blue, BL red."""
    out = _to_bgr(image)
    for label, marker in (('TL', markers.top_left), ('TR', markers.top_right), ('BL', markers.bottom_left)):
        if marker is not None:
            _draw_marker(out, marker, MARKER_COLORS[label], label)
    return out


def draw_grid(sheet: np.ndarray, grid: GridGeometry, answers: Sequence[Answer] = ()) -> np.ndarray:
    """Alternative cells of every row; the answer read for a row is filled in."""
    out = _to_bgr(sheet)
    by_question = {a.question: a for a in answers}

    for row in grid.all_rows:
        answer = by_question.get(row.question_number)
        for alt in row.alternatives:
            p1 = (int(alt.x - alt.width / 2), int(alt.y - alt.height / 2))
            p2 = (int(alt.x + alt.width / 2), int(alt.y + alt.height / 2))
            cv2.rectangle(out, p1, p2, GRID_COLOR, 1)

            if answer is None:
                continue
            radius = int(min(alt.width, alt.height) / 3)
            if answer.selected == alt.letter:
                cv2.circle(out, (int(alt.x), int(alt.y)), radius, SELECTED_COLOR, -1)
            elif answer.multiple_marks and any(c.letter == alt.letter for c in answer.all_marked):
                cv2.circle(out, (int(alt.x), int(alt.y)), radius, MULTIPLE_COLOR, -1)

        cv2.putText(out, str(row.question_number),
                    (int(row.alternatives[0].x - row.alternatives[0].width), int(row.y + 5)),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.4, GRID_COLOR, 1)
    return out


def draw_detections(image: np.ndarray, detections: Sequence[Detection]) -> np.ndarray:
    """Detection boxes with class and confidence, colour per class."""
    out = _to_bgr(image)
    for det in detections:
        b = det.bbox
        color = CLASS_COLORS.get(det.mark_class, (128, 128, 128))
        p1 = (int(b.x), int(b.y))
        p2 = (int(b.x + b.width), int(b.y + b.height))
        cv2.rectangle(out, p1, p2, color, 2)
        cv2.putText(out, f"{det.mark_class} {det.confidence:.2f}", (p1[0], max(10, p1[1] - 4)),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.4, color, 1)
    return out
