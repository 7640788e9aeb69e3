import json

import cv2
import numpy as np
import pytest

from conftest import CONFIG_DIR, KEY_10
from sheet_corrector.core import GridGeometryResolver, ImageAligner, ImageBuffer
from sheet_corrector.core.models import Answer, BoundingBox, Detection, MarkCandidate
from sheet_corrector.main import build_parser, collect_inputs, main
from sheet_corrector.utils import ImageUtils
from sheet_corrector.utils.visualize import draw_detections, draw_grid, draw_markers


def test_overlays_do_not_touch_the_input(render, layout):
    sheet = render(4, marks={1: "A"})
    original = sheet.copy()

    markers = ImageAligner({}, layout).detect_markers(sheet)
    grid = GridGeometryResolver({}, layout).resolve(ImageBuffer(sheet))
    answers = [
        Answer.from_candidates(1, [MarkCandidate("A", 0.9, "mark_circle")]),
        Answer.from_candidates(2, [MarkCandidate("A", 0.9, None), MarkCandidate("B", 0.9, None)]),
    ]

    for out in (
        draw_markers(sheet, markers),
        draw_grid(sheet, grid, answers),
        draw_detections(sheet, [Detection(BoundingBox(10, 10, 20, 20), 0.8, "mark_X")]),
    ):
        assert out.shape == sheet.shape
        assert not np.array_equal(out, original)
    assert np.array_equal(sheet, original)


def test_overlay_of_grayscale_image_is_bgr():
    gray = np.full((50, 50), 255, dtype=np.uint8)
    out = draw_detections(gray, [Detection(BoundingBox(5, 5, 10, 10), 0.5, "unknown")])
    assert out.shape == (50, 50, 3)


def test_thumbnail(render):
    data = ImageUtils.thumbnail(render(2), width=200)
    thumb = cv2.imdecode(np.frombuffer(data, np.uint8), cv2.IMREAD_COLOR)
    assert thumb.shape[1] == 200


def test_save_image(tmp_path):
    path = tmp_path / "debug" / "sheet.png"
    assert ImageUtils.save_image(np.zeros((8, 8, 3), dtype=np.uint8), path)
    assert path.exists()


# ------------------------------------------------------------
# Command line
# ------------------------------------------------------------

def test_parser_defaults():
    args = build_parser().parse_args(["scans", "--exam", "quiz-01", "--concurrency", "2", "--no-identify"])
    assert args.exam == "quiz-01"
    assert args.concurrency == 2
    assert args.no_identify
    assert args.format is None


def test_collect_inputs(tmp_path):
    (tmp_path / "a.png").write_bytes(b"")
    (tmp_path / "b.pdf").write_bytes(b"")
    (tmp_path / "c.txt").write_bytes(b"")
    found = collect_inputs([tmp_path, tmp_path / "missing.png"])
    assert [p.name for p in found] == ["a.png", "b.pdf"]


@pytest.fixture
def cli_config(tmp_path):
    config = tmp_path / "config.json"
    config.write_text(json.dumps({
        "detector": {"backend": "contour"},
        "recognizer": {"backend": "scripted"},
        "storage": {
            "exams_path": str(CONFIG_DIR / "exams.json"),
            "roster_path": str(CONFIG_DIR / "roster.csv"),
            "result_dir": str(tmp_path / "results"),
        },
    }), encoding="utf-8")
    return config


def test_cli_check(cli_config, capsys):
    assert main(["--config", str(cli_config), "--check"]) == 0
    assert "detector" in capsys.readouterr().out


def test_cli_requires_exam(cli_config):
    assert main(["--config", str(cli_config)]) == 2


def test_cli_corrects_a_folder(cli_config, tmp_path, render, capsys):
    scans = tmp_path / "scans"
    scans.mkdir()
    marks = {q: letter for q, letter in enumerate(KEY_10, start=1)}
    ok, buf = cv2.imencode(".png", render(10, marks=marks))
    (scans / "sheet.png").write_bytes(buf.tobytes())
    out = tmp_path / "results"

    code = main([str(scans), "--config", str(cli_config), "--exam", "quiz-01", "--out", str(out)])

    assert code == 0
    assert (out / "quiz-01_summary.csv").exists()
    assert "Pages: 1/1" in capsys.readouterr().out


def test_cli_unknown_exam(cli_config, tmp_path, render):
    ok, buf = cv2.imencode(".png", render(3))
    (tmp_path / "s.png").write_bytes(buf.tobytes())
    assert main([str(tmp_path / "s.png"), "--config", str(cli_config), "--exam", "nope",
                 "--out", str(tmp_path / "r")]) == 1


def test_cli_template_preview(cli_config, tmp_path, capsys):
    target = tmp_path / "preview" / "quiz-01.png"

    assert main(["--config", str(cli_config), "--exam", "quiz-01", "--preview-template", str(target)]) == 0

    sheet = cv2.imdecode(np.fromfile(str(target), np.uint8), cv2.IMREAD_COLOR)
    grid = GridGeometryResolver({}).resolve(ImageBuffer(sheet))
    assert grid.rows_detected == 10
    assert "Template written to" in capsys.readouterr().out


def test_cli_debug_dir(cli_config, tmp_path, render):
    ok, buf = cv2.imencode(".png", render(10))
    (tmp_path / "s.png").write_bytes(buf.tobytes())
    debug = tmp_path / "debug"

    code = main([str(tmp_path / "s.png"), "--config", str(cli_config), "--exam", "quiz-01",
                 "--out", str(tmp_path / "r"), "--debug-dir", str(debug)])

    assert code == 0
    assert (debug / "page_001_grid.png").exists()
