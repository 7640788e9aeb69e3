from dataclasses import dataclass
from typing import Any, Dict, Tuple

from .models import LEFT


@dataclass(frozen=True)
class TableBounds:
    """Horizontal extent of one answer table, in millimetres."""
    start_x: float
    end_x: float
    number_column: float

    @property
    def alternatives_start_x(self) -> float:
        return self.start_x + self.number_column

    @property
    def alternatives_span(self) -> float:
        return self.end_x - self.alternatives_start_x


@dataclass(frozen=True)
class SheetLayout:
    """
    Physical geometry of the answer sheet.

    This is a contract with the sheet generator: the numbers below are exactly
    what it prints on an A4 page (millimetres, origin top-left). Everything
    downstream converts them to pixels with the real size of the image at
    hand, so the same layout applies to the canonical frame and to an
    unaligned scan.
    """

    page_width: float = 210.0
    page_height: float = 297.0

    # Canonical aligned frame (A4 at ~192 DPI)
    canonical_width: int = 1588
    canonical_height: int = 2246

    # Finder markers: concentric squares at TL, TR, BL (none at BR)
    finder_size: float = 15.0
    finder_offset: float = 10.0
    finder_ring: float = 3.0
    finder_core_inset: float = 5.0

    # Answer tables
    left_table: TableBounds = TableBounds(37.33, 102.0, 6.0)
    right_table: TableBounds = TableBounds(108.0, 172.67, 6.0)
    tables_top: float = 70.0
    footer_band: float = 30.0
    row_pitch: float = 5.0

    # Row markers printed just outside the outer edge of each table
    row_marker_size: float = 3.0
    row_marker_offset: float = 2.0
    row_strip_width: float = 8.0

    # Identifier (ID number) field: x, y, w, h
    id_field: Tuple[float, float, float, float] = (30.0, 48.0, 70.0, 16.0)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SheetLayout":
        cfg = dict(config.get('layout', {}))
        for name in ('left_table', 'right_table'):
            if name in cfg and isinstance(cfg[name], dict):
                cfg[name] = TableBounds(**cfg[name])
        if 'id_field' in cfg:
            cfg['id_field'] = tuple(cfg['id_field'])
        return cls(**cfg)

    # --- scale ---------------------------------------------------------

    def scale_for(self, width: int, height: int) -> Tuple[float, float]:
        """Pixels per millimetre (x, y) for an image of the given size."""
        return width / self.page_width, height / self.page_height

    @property
    def canonical_size(self) -> Tuple[int, int]:
        return self.canonical_width, self.canonical_height

    # --- finder markers ------------------------------------------------

    def finder_centers_mm(self) -> Dict[str, Tuple[float, float]]:
        half = self.finder_size / 2.0
        near = self.finder_offset + half
        return {
            'top_left': (near, near),
            'top_right': (self.page_width - near, near),
            'bottom_left': (near, self.page_height - near),
        }

    def canonical_finder_centers(self) -> Dict[str, Tuple[float, float]]:
        sx, sy = self.scale_for(self.canonical_width, self.canonical_height)
        return {k: (x * sx, y * sy) for k, (x, y) in self.finder_centers_mm().items()}

    def expected_finder_area_fraction(self) -> float:
        return (self.finder_size * self.finder_size) / (self.page_width * self.page_height)

    # --- tables & row markers ------------------------------------------

    def table(self, side: str) -> TableBounds:
        return self.left_table if side == LEFT else self.right_table

    def row_marker_x_mm(self, side: str) -> float:
        """Left edge of the row markers of one side."""
        table = self.table(side)
        if side == LEFT:
            return table.start_x - self.row_marker_offset - self.row_marker_size
        return table.end_x + self.row_marker_offset

    def row_strip_mm(self, side: str) -> Tuple[float, float]:
        """[x0, x1] of the vertical strip scanned for row markers."""
        table = self.table(side)
        if side == LEFT:
            return table.start_x - self.row_strip_width, table.start_x - 0.5
        return table.end_x + 0.5, table.end_x + self.row_strip_width

    def row_band_mm(self) -> Tuple[float, float]:
        """[y0, y1] between the header band and the footer band."""
        return self.tables_top, self.page_height - self.footer_band

    def alternative_centers_mm(self, side: str, count: int) -> Tuple[float, ...]:
        table = self.table(side)
        step = table.alternatives_span / float(count)
        return tuple(table.alternatives_start_x + (i + 0.5) * step for i in range(count))

    def expected_row_marker_area(self, width: int, height: int) -> float:
        sx, sy = self.scale_for(width, height)
        return (self.row_marker_size * sx) * (self.row_marker_size * sy)
