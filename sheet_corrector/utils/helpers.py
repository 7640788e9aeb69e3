import cv2
import numpy as np
from pathlib import Path
from typing import Optional


class ImageUtils:
    """
    Static helpers for image encoding (no pipeline state).
    """

    THUMBNAIL_WIDTH = 320
    JPEG_QUALITY = 70

    @staticmethod
    def thumbnail(image: np.ndarray, width: int = THUMBNAIL_WIDTH, quality: int = JPEG_QUALITY) -> Optional[bytes]:
        """
        JPEG bytes of `image` scaled down to `width` pixels wide.
        Images already narrower are encoded as they are.
        """
        h, w = image.shape[:2]
        if w > width:
            new_h = max(1, int(round(h * width / float(w))))
            image = cv2.resize(image, (width, new_h), interpolation=cv2.INTER_AREA)

        success, buffer = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
        if not success:
            return None
        return buffer.tobytes()

    @staticmethod
    def save_image(image: np.ndarray, save_path: Path) -> bool:
        """
        Write an image through cv2.imencode so that unicode paths work
        on every platform.
        """
        save_path.parent.mkdir(parents=True, exist_ok=True)
        success, buffer = cv2.imencode(save_path.suffix or ".png", image)
        if not success:
            return False
        with open(save_path, "wb") as f:
            f.write(buffer)
        return True
