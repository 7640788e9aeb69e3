import cv2
import numpy as np
import pytesseract
from PIL import Image
from typing import Any, Dict

from sheet_corrector.core.aligner import to_gray
from sheet_corrector.core.buffers import ImageBuffer
from sheet_corrector.core.identifier import MIN_BODY_DIGITS, is_valid_id, parse_recognized_text
from sheet_corrector.core.interfaces import IdRecognizer
from sheet_corrector.core.models import IdRecognition
from sheet_corrector.utils import app_logger


class TesseractIdRecognizer(IdRecognizer):
    """
    Reads the identifier field with Tesseract.

    Preprocessing: x3 nearest-neighbour upscale, then a hard threshold at 127.
    Recognition is restricted to digits and K on a single text line.
    """

    UPSCALE = 3
    THRESHOLD = 127
    WHITELIST = "0123456789kK"
    PSM = 7  # single text line
    LANG = "eng"

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        cfg = config.get('recognizer', {})
        self.upscale = int(cfg.get('upscale', self.UPSCALE))
        self.threshold = int(cfg.get('threshold', self.THRESHOLD))
        self.lang = cfg.get('lang', self.LANG)
        self.tesseract_cmd = cfg.get('tesseract_cmd')
        self.ready = False
        app_logger.debug("TesseractIdRecognizer configured.")

    @property
    def tess_config(self) -> str:
        return (f"--psm {self.PSM} -c tessedit_char_whitelist={self.WHITELIST} "
                f"-c preserve_interword_spaces=0")

    def initialize(self) -> None:
        if self.ready:
            return
        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd
        try:
            version = pytesseract.get_tesseract_version()
            app_logger.info(f"Tesseract {version} ready for ID recognition.")
            self.ready = True
        except Exception as e:
            app_logger.error(f"Tesseract is not available: {e}")
            raise

    def preprocess(self, img: np.ndarray) -> Image.Image:
        gray = to_gray(img)
        big = cv2.resize(gray, None, fx=self.upscale, fy=self.upscale, interpolation=cv2.INTER_NEAREST)
        _, binary = cv2.threshold(big, self.threshold, 255, cv2.THRESH_BINARY)
        return Image.fromarray(binary)

    def extract(self, image: ImageBuffer) -> IdRecognition:
        try:
            pil_img = self.preprocess(image.array)
            data = pytesseract.image_to_data(
                pil_img, lang=self.lang, config=self.tess_config,
                output_type=pytesseract.Output.DICT,
            )
            words = [w for w in data.get("text", []) if w and w.strip()]
            raw_text = "".join(words).strip()

            confs = [float(c) for c in data.get("conf", []) if float(c) >= 0]
            confidence = (sum(confs) / len(confs)) / 100.0 if confs else 0.0

            body, dv = parse_recognized_text(raw_text)
            result = IdRecognition(
                success=len(body) >= MIN_BODY_DIGITS,
                id=body or None,
                check_digit=dv or None,
                is_valid=is_valid_id(body, dv),
                confidence=confidence,
                raw_text=raw_text,
            )
            if result.success:
                app_logger.debug(f"ID read: {result.formatted} (valid={result.is_valid}, conf={confidence:.2f})")
            else:
                app_logger.warning(f"Could not read an ID from OCR text '{raw_text}'.")
            return result

        except Exception as e:
            app_logger.error(f"OCR failed: {e}")
            return IdRecognition(success=False, error=str(e))

    def terminate(self) -> None:
        self.ready = False
