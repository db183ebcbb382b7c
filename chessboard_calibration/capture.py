"""Camera access and interactive capture of chessboard photos."""

from __future__ import annotations

import shutil
import sys
from pathlib import Path

import cv2

# ---- Configuration ----
IMAGE_PREFIX = "calibration_image_"
IMAGE_EXTENSION = ".png"
WINDOW_NAME = "Calibration Image"
# Key poll timeout per frame; short so capture is not stalled waiting for input.
KEY_POLL_MS = 5
ESC_KEY = 27
QUIT_KEYS = (ESC_KEY, ord("q"))
# RETURN arrives as CR or LF depending on the window toolkit.
CAPTURE_KEYS = (13, 10)

BACKENDS = {
    "any": cv2.CAP_ANY,
    "v4l2": cv2.CAP_V4L2,
    "dshow": cv2.CAP_DSHOW,
    "msmf": cv2.CAP_MSMF,
    "avfoundation": cv2.CAP_AVFOUNDATION,
}
DEFAULT_BACKEND = "v4l2" if sys.platform.startswith("linux") else "any"
# -----------------------


class CameraUnavailableError(Exception):
    """The video stream for a camera could not be opened."""

    def __init__(self, camera_index: int):
        super().__init__(f"Failed to open the video stream for camera #{camera_index}")
        self.camera_index = camera_index


class ImagesDirError(Exception):
    """The calibration images directory cannot be used."""


class ImagesDirNotEmptyError(ImagesDirError):
    """The calibration images directory already holds entries."""

    def __init__(self, images_dir: Path):
        super().__init__(f"The calibration images directory {images_dir} is not empty")
        self.images_dir = images_dir


def open_camera(camera_index: int, backend: str = DEFAULT_BACKEND):
    if backend not in BACKENDS:
        raise ValueError(
            f"Unknown backend '{backend}'. Available: {', '.join(sorted(BACKENDS))}"
        )
    capture = cv2.VideoCapture(camera_index, BACKENDS[backend])
    if not capture.isOpened():
        capture.release()
        raise CameraUnavailableError(camera_index)
    return capture


def calibration_image_name(index: int, pad_width: int = 0) -> str:
    """`calibration_image_<index>.png`, zero-padded to `pad_width` digits if > 0."""
    number = f"{index:0{pad_width}d}" if pad_width > 0 else str(index)
    return f"{IMAGE_PREFIX}{number}{IMAGE_EXTENSION}"


def resolve_images_dir(base_dir: Path, name: str) -> Path:
    """Resolve `name` against `base_dir`; it must name a path strictly inside it."""
    base_dir = Path(base_dir).resolve()
    images_dir = (base_dir / name).resolve()
    if base_dir not in images_dir.parents:
        raise ImagesDirError(
            f"The calibration images directory {images_dir} is not a subdirectory of {base_dir}"
        )
    return images_dir


def prepare_images_dir(images_dir: Path, delete_existing: bool) -> int:
    """Make sure `images_dir` exists and is empty.

    Returns the number of entries removed. Raises ImagesDirNotEmptyError,
    leaving the directory untouched, when it holds entries and
    `delete_existing` is false, and ImagesDirError when the path is not a
    directory.
    """
    images_dir = Path(images_dir)
    if not images_dir.exists():
        images_dir.mkdir(parents=True)
        return 0
    if not images_dir.is_dir():
        raise ImagesDirError(f"The calibration images path {images_dir} is not a directory")
    entries = list(images_dir.iterdir())
    if not entries:
        return 0
    if not delete_existing:
        raise ImagesDirNotEmptyError(images_dir)
    for entry in entries:
        # Symlinks are unlinked, never followed.
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
    return len(entries)


def acquire_calibration_images(capture, images_dir: Path, pad_width: int = 0) -> int:
    """Show live frames and save one on every RETURN until ESC or end of stream."""
    images_dir = Path(images_dir)
    print("Hit RETURN to grab an image, ESC to quit...")
    cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_AUTOSIZE)

    count = 0
    try:
        while True:
            ok, frame = capture.read()
            if not ok or frame is None:
                break
            cv2.imshow(WINDOW_NAME, frame)

            key = cv2.waitKey(KEY_POLL_MS) & 0xFF
            if key in QUIT_KEYS:
                break
            if key in CAPTURE_KEYS:
                path = images_dir / calibration_image_name(count + 1, pad_width)
                if not cv2.imwrite(str(path), frame):
                    print(f"Failed to write {path}")
                    continue
                count += 1
                print(f"Image grabbed #{count}")
    finally:
        cv2.destroyAllWindows()
    return count
