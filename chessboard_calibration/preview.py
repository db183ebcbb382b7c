"""Live camera preview undistorted with a persisted calibration."""

from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np

from .capture import KEY_POLL_MS, QUIT_KEYS
from .storage import CalibrationFileError, load_calibration

WINDOW_NAME = "Calibrated Video"
# Free scaling for getOptimalNewCameraMatrix (0=crop to valid pixels, 1=keep all).
DEFAULT_ALPHA = 0.0


def build_undistort_maps(camera_matrix, dist_coeffs, frame_size, alpha: float = DEFAULT_ALPHA):
    width, height = frame_size
    new_camera_matrix, _ = cv2.getOptimalNewCameraMatrix(
        camera_matrix, dist_coeffs, (width, height), alpha, (width, height)
    )
    map1, map2 = cv2.initUndistortRectifyMap(
        camera_matrix,
        dist_coeffs,
        None,
        new_camera_matrix,
        (width, height),
        cv2.CV_32FC1,
    )
    return map1, map2


def undistort_frame(frame: np.ndarray, map1, map2) -> np.ndarray:
    return cv2.remap(frame, map1, map2, interpolation=cv2.INTER_LINEAR)


def stream_frame_size(capture):
    """Frame size reported by the capture, plus the frame read to find it, if any.

    Some backends report 0x0 until a frame arrives; the first frame is read
    and returned so the caller can still show it.
    """
    width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
    height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
    if width > 0 and height > 0:
        return (width, height), None
    ok, frame = capture.read()
    if not ok or frame is None:
        return None, None
    return (frame.shape[1], frame.shape[0]), frame


def run_live_preview(capture, calibration_path: Path, alpha: float = DEFAULT_ALPHA) -> bool:
    """Remap every live frame with the stored calibration until ESC.

    Returns False without showing anything when the calibration cannot be
    loaded or the stream yields no frames.
    """
    try:
        camera_matrix, dist_coeffs = load_calibration(calibration_path)
    except CalibrationFileError as exc:
        print(f"Unable to open: {Path(calibration_path).name}")
        print(f"Reason: {exc}")
        return False

    print()
    print(f"Camera Matrix:\n{camera_matrix}\n")
    print(f"Distortion Coefficients:\n{dist_coeffs}\n")

    frame_size, pending = stream_frame_size(capture)
    if frame_size is None:
        print("The video stream produced no frames")
        return False
    # Built once per session; frames of another size are shown unmapped.
    try:
        map1, map2 = build_undistort_maps(camera_matrix, dist_coeffs, frame_size, alpha)
    except cv2.error as exc:
        print("Unable to build the undistortion maps")
        print(f"Reason: {exc}")
        return False

    cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_AUTOSIZE)
    try:
        while True:
            if pending is not None:
                frame, pending = pending, None
            else:
                ok, frame = capture.read()
                if not ok or frame is None:
                    break
            if (frame.shape[1], frame.shape[0]) == frame_size:
                frame = undistort_frame(frame, map1, map2)
            cv2.imshow(WINDOW_NAME, frame)

            key = cv2.waitKey(KEY_POLL_MS) & 0xFF
            if key in QUIT_KEYS:
                break
    finally:
        cv2.destroyAllWindows()
    return True
