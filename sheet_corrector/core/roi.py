from typing import Any, Dict, Optional

from sheet_corrector.utils import app_logger
from .buffers import ImageBuffer
from .layout import SheetLayout
from .models import LEFT, RIGHT, GridGeometry, RegionOfInterest, SheetRois


class RoiExtractor:
    """Crops the identifier field and the two answer tables out of a sheet."""

    ROW_MARGIN_MM = 5.0

    def __init__(self, config: Dict[str, Any], layout: Optional[SheetLayout] = None):
        self.config = config
        self.layout = layout or SheetLayout.from_config(config)
        cfg = config.get('roi', {})
        self.row_margin_mm = float(cfg.get('row_margin_mm', self.ROW_MARGIN_MM))
        app_logger.debug("RoiExtractor initialized.")

    @staticmethod
    def _crop(sheet: ImageBuffer, x0: float, y0: float, x1: float, y1: float,
              label: str, side: Optional[str] = None) -> Optional[RegionOfInterest]:
        # Clamp to the image
        x0 = max(0, int(round(x0)))
        y0 = max(0, int(round(y0)))
        x1 = min(sheet.width, int(round(x1)))
        y1 = min(sheet.height, int(round(y1)))
        if x1 <= x0 or y1 <= y0:
            return None
        return RegionOfInterest(sheet.crop(x0, y0, x1 - x0, y1 - y0, label), x0, y0, side)

    def extract_id_field(self, sheet: ImageBuffer) -> Optional[RegionOfInterest]:
        sx, sy = self.layout.scale_for(sheet.width, sheet.height)
        x, y, w, h = self.layout.id_field
        return self._crop(sheet, x * sx, y * sy, (x + w) * sx, (y + h) * sy, "roi_id")

    def extract_table(self, sheet: ImageBuffer, grid: GridGeometry, side: str) -> Optional[RegionOfInterest]:
        rows = grid.rows(side)
        if not rows:
            return None

        sx, sy = self.layout.scale_for(sheet.width, sheet.height)
        table = self.layout.table(side)
        margin = self.row_margin_mm * sy
        return self._crop(
            sheet,
            table.start_x * sx, rows[0].y - margin,
            table.end_x * sx, rows[-1].y + margin,
            f"roi_{side}", side,
        )

    def extract(self, sheet: ImageBuffer, grid: GridGeometry) -> SheetRois:
        """
        All regions of one sheet. Offsets are kept so detections made inside a
        table ROI can be moved back to sheet coordinates.
        """
        rois = SheetRois(
            id_field=self.extract_id_field(sheet),
            left_table=self.extract_table(sheet, grid, LEFT),
            right_table=self.extract_table(sheet, grid, RIGHT),
        )
        app_logger.debug(
            f"ROIs extracted. id={'yes' if rois.id_field else 'no'}, "
            f"left={'yes' if rois.left_table else 'no'}, right={'yes' if rois.right_table else 'no'}"
        )
        return rois
