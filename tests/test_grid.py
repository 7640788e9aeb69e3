import pytest

from sheet_corrector.core import GridGeometryResolver, ImageBuffer, RoiExtractor
from sheet_corrector.core.models import LEFT, RIGHT
from sheet_corrector.core.sheet_template import row_center_mm


@pytest.fixture
def resolver(layout):
    return GridGeometryResolver({}, layout)


def test_row_markers_sorted_by_y(resolver, render, layout):
    sheet = ImageBuffer(render(10, right_rows=5))
    _, sy = layout.scale_for(sheet.width, sheet.height)

    left = resolver.detect_row_markers(sheet, LEFT)
    right = resolver.detect_row_markers(sheet, RIGHT)

    assert len(left) == 10
    assert len(right) == 5
    assert [m.y for m in left] == sorted(m.y for m in left)
    for i, marker in enumerate(left):
        assert marker.y == pytest.approx(row_center_mm(layout, i) * sy, abs=2)


def test_question_numbering_continues_on_the_right(resolver, render):
    grid = resolver.resolve(ImageBuffer(render(10, right_rows=5)))

    assert grid.rows_detected == 15
    assert [r.question_number for r in grid.left] == list(range(1, 11))
    assert [r.question_number for r in grid.right] == list(range(11, 16))
    assert all(r.side == RIGHT for r in grid.right)


def test_alternatives_follow_the_column_layout(resolver, render, layout):
    sheet = ImageBuffer(render(3, alternative_count=5))
    grid = resolver.resolve(sheet, alternative_count=5)
    sx, _ = layout.scale_for(sheet.width, sheet.height)

    row = grid.left[0]
    assert [a.letter for a in row.alternatives] == ["A", "B", "C", "D", "E"]
    expected = layout.alternative_centers_mm(LEFT, 5)
    for alt, cx in zip(row.alternatives, expected):
        assert alt.x == pytest.approx(cx * sx)
        assert alt.y == row.y


def test_at_least_four_alternatives(resolver, render):
    grid = resolver.resolve(ImageBuffer(render(2)), alternative_count=2)
    assert len(grid.left[0].alternatives) == 4


def test_blank_sheet_has_no_rows(resolver, blank_page):
    grid = resolver.resolve(ImageBuffer(blank_page))
    assert grid.rows_detected == 0
    assert grid.all_rows == []


def test_table_rois_cover_every_row(resolver, render, layout):
    sheet = ImageBuffer(render(10, right_rows=5))
    grid = resolver.resolve(sheet)
    rois = RoiExtractor({}, layout).extract(sheet, grid)

    assert rois.id_field is not None
    assert rois.id_field.image.label == "roi_id"
    for side, rows in ((LEFT, grid.left), (RIGHT, grid.right)):
        roi = rois.table(side)
        assert roi.side == side
        assert roi.image.label == f"roi_{side}"
        assert roi.y < rows[0].y
        assert roi.y + roi.image.height > rows[-1].y
        for alt in rows[0].alternatives:
            assert roi.x < alt.x < roi.x + roi.image.width


def test_missing_side_has_no_roi(resolver, render, layout):
    sheet = ImageBuffer(render(4))
    grid = resolver.resolve(sheet)
    rois = RoiExtractor({}, layout).extract(sheet, grid)

    assert rois.left_table is not None
    assert rois.right_table is None
    assert len(rois.buffers()) == 2


def test_roi_crop_is_independent_of_the_sheet(resolver, render, layout):
    sheet = ImageBuffer(render(4))
    roi = RoiExtractor({}, layout).extract_id_field(sheet)
    sheet.release()
    assert roi.image.array.size > 0
