import cv2
import fitz  # PyMuPDF
import numpy as np
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence, Union

from sheet_corrector.core.buffers import ImageBuffer
from sheet_corrector.core.exceptions import PageDecodeError
from sheet_corrector.core.models import Page
from .logger import app_logger

PageInput = Union[Page, str, Path, np.ndarray]
DecodeCallback = Callable[[int, int, str], None]

PDF_SCALE = 2.0
IMAGE_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.bmp', '.tif', '.tiff', '.webp'}


def is_pdf(path: Path) -> bool:
    return path.suffix.lower() == '.pdf'


def decode_image_file(path: Path) -> np.ndarray:
    """
    Read an image file. np.fromfile + cv2.imdecode instead of cv2.imread so
    that unicode paths also work on Windows.
    """
    try:
        stream = np.fromfile(str(path), np.uint8)
    except OSError as e:
        raise PageDecodeError(f"Cannot read image file {path}: {e}")

    img = cv2.imdecode(stream, cv2.IMREAD_UNCHANGED)
    if img is None:
        raise PageDecodeError(f"Cannot decode image file {path} (corrupted or unsupported format).")
    return img


def render_pdf_pages(path: Path, scale: float = PDF_SCALE) -> Iterator[np.ndarray]:
    """Yield every page of a PDF as a BGR image rendered at `scale`."""
    try:
        doc = fitz.open(str(path))
    except Exception as e:
        raise PageDecodeError(f"Cannot open PDF {path}: {e}")

    try:
        for page in doc:
            pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale))
            arr = np.frombuffer(pix.samples, dtype=np.uint8).reshape(pix.height, pix.width, pix.n)
            if pix.n == 4:
                yield cv2.cvtColor(arr, cv2.COLOR_RGBA2BGRA)
            elif pix.n == 3:
                yield cv2.cvtColor(arr, cv2.COLOR_RGB2BGR)
            else:
                yield arr.copy()
    finally:
        doc.close()


def count_pages(source: PageInput) -> int:
    if isinstance(source, (Page, np.ndarray)):
        return 1
    path = Path(source)
    if is_pdf(path):
        try:
            with fitz.open(str(path)) as doc:
                return doc.page_count
        except Exception as e:
            raise PageDecodeError(f"Cannot open PDF {path}: {e}")
    return 1


def list_page_files(folder: Path) -> List[Path]:
    """Images and PDFs of a folder, sorted by name."""
    return sorted(
        p for p in folder.iterdir()
        if p.is_file() and (p.suffix.lower() in IMAGE_EXTENSIONS or is_pdf(p))
    )


def load_pages(sources: Sequence[PageInput],
               on_page: Optional[DecodeCallback] = None,
               pdf_scale: float = PDF_SCALE) -> List[Page]:
    """
    Turn the batch inputs into numbered Pages.

    Inputs may be Page objects (kept, renumbered), image arrays, image paths
    or PDF paths (one Page per PDF page). `on_page(current, total, message)`
    is called after every decoded page. Raises PageDecodeError for an
    unreadable file; pages decoded so far are released first.
    """
    total = sum(count_pages(s) for s in sources)
    pages: List[Page] = []

    def add(image: ImageBuffer, source: str) -> None:
        page = Page(page_number=len(pages) + 1, image=image, source=source)
        pages.append(page)
        if on_page is not None:
            on_page(len(pages), total, f"Decoded page {page.page_number} of {total}")

    try:
        for source in sources:
            if isinstance(source, Page):
                add(source.image, source.source)
            elif isinstance(source, np.ndarray):
                add(ImageBuffer(source, f"page_{len(pages) + 1}"), "array")
            else:
                path = Path(source)
                if is_pdf(path):
                    for i, img in enumerate(render_pdf_pages(path, pdf_scale), start=1):
                        add(ImageBuffer(img, f"{path.stem}_p{i}"), f"{path.name}#{i}")
                else:
                    add(ImageBuffer(decode_image_file(path), path.stem), path.name)
    except PageDecodeError as e:
        app_logger.error(f"Page decoding failed: {e}")
        for page in pages:
            page.release()
        raise

    app_logger.info(f"Decoded {len(pages)} pages from {len(sources)} inputs.")
    return pages
