"""
sheet_corrector: automated correction of scanned answer sheets.

Packages:
- core: geometry (alignment, grid, ROIs), answer mapping and scoring.
- collaborators: mark detector, ID recognizer and repositories.
- workers: batch orchestration.
- utils: logging, file I/O, page decoding and debug overlays.
"""

__version__ = "1.0.0"
