import numpy as np
from typing import Optional

from .exceptions import BufferReleasedError


class ImageBuffer:
    """
    Owned image buffer.

    Every image produced by a pipeline stage (decoded page, binarized image,
    aligned frame, ROI crops) is wrapped in one of these and owned by a single
    page pipeline. Use it as a context manager (or enter it into an ExitStack)
    so that release() runs on every exit path.
    """

    def __init__(self, array: np.ndarray, label: str = "image"):
        self._array: Optional[np.ndarray] = array
        self.label = label

    @property
    def array(self) -> np.ndarray:
        if self._array is None:
            raise BufferReleasedError(f"Image buffer '{self.label}' was already released.")
        return self._array

    @property
    def released(self) -> bool:
        return self._array is None

    @property
    def shape(self):
        return self.array.shape

    @property
    def width(self) -> int:
        return int(self.array.shape[1])

    @property
    def height(self) -> int:
        return int(self.array.shape[0])

    def view(self, label: str) -> "ImageBuffer":
        """New buffer over the same pixels, owned separately."""
        return ImageBuffer(self.array, label)

    def crop(self, x: int, y: int, w: int, h: int, label: str) -> "ImageBuffer":
        # Copy so the crop outlives the parent frame
        return ImageBuffer(self.array[y:y + h, x:x + w].copy(), label)

    def release(self) -> None:
        self._array = None

    def __enter__(self) -> "ImageBuffer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        if self._array is None:
            return f"ImageBuffer({self.label!r}, released)"
        return f"ImageBuffer({self.label!r}, {self.width}x{self.height})"
