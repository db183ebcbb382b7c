"""Compute camera intrinsics from a directory of chessboard photos."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import cv2
import numpy as np

from .capture import IMAGE_EXTENSION, WINDOW_NAME
from .storage import save_calibration

# Interior corners (columns, rows) of the printed chessboard.
DEFAULT_PATTERN_SIZE = (13, 8)
DEFAULT_SQUARE_SIZE = 1.0
SUBPIX_WINDOW = (11, 11)
SUBPIX_ZERO_ZONE = (-1, -1)
SUBPIX_CRITERIA = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 30, 0.001)
# Used only when no image could be loaded to measure the real size.
FALLBACK_IMAGE_SIZE = (1920, 1080)


class CalibrationError(Exception):
    """Calibration could not be computed from the collected images."""


@dataclass
class Correspondences:
    """Matched board points and detected corners, one entry per usable image."""
    object_points: list = field(default_factory=list)
    image_points: list = field(default_factory=list)
    files: list = field(default_factory=list)
    image_size: tuple[int, int] | None = None

    def add(self, object_points: np.ndarray, corners: np.ndarray, file_name: str) -> None:
        self.object_points.append(object_points)
        self.image_points.append(corners)
        self.files.append(file_name)

    def __len__(self) -> int:
        return len(self.image_points)


@dataclass
class CalibrationResult:
    reprojection_error: float
    camera_matrix: np.ndarray
    dist_coeffs: np.ndarray
    rvecs: tuple
    tvecs: tuple
    image_size: tuple[int, int]
    files: list
    per_view_errors: list


def build_object_points(pattern_size=DEFAULT_PATTERN_SIZE, square_size: float = DEFAULT_SQUARE_SIZE) -> np.ndarray:
    """Board corner coordinates on the z=0 plane, row by row."""
    cols, rows = pattern_size
    grid = np.zeros((rows * cols, 3), dtype=np.float32)
    grid[:, :2] = np.mgrid[0:cols, 0:rows].T.reshape(-1, 2)
    return grid * np.float32(square_size)


def list_calibration_images(images_dir: Path) -> list[Path]:
    """Image files in `images_dir`, sorted by file name.

    The order is lexicographic, so unpadded counters sort
    `calibration_image_10.png` before `calibration_image_2.png`.
    """
    images_dir = Path(images_dir)
    files = [
        path
        for path in images_dir.iterdir()
        if path.is_file() and path.name.endswith(IMAGE_EXTENSION)
    ]
    return sorted(files, key=lambda path: path.name)


def find_corners(gray: np.ndarray, pattern_size=DEFAULT_PATTERN_SIZE):
    """Detect the chessboard and refine its corners, or return None."""
    found, corners = cv2.findChessboardCorners(gray, pattern_size)
    if not found or corners is None:
        return None
    return cv2.cornerSubPix(gray, corners, SUBPIX_WINDOW, SUBPIX_ZERO_ZONE, SUBPIX_CRITERIA)


def _review(image: np.ndarray, pattern_size, corners: np.ndarray) -> None:
    annotated = image.copy()
    cv2.drawChessboardCorners(annotated, pattern_size, corners, True)
    cv2.imshow(WINDOW_NAME, annotated)
    cv2.waitKey(0)


def collect_correspondences(
    images_dir: Path,
    pattern_size=DEFAULT_PATTERN_SIZE,
    square_size: float = DEFAULT_SQUARE_SIZE,
    review: bool = True,
) -> Correspondences:
    object_points = build_object_points(pattern_size, square_size)
    result = Correspondences()

    if review:
        cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_AUTOSIZE)
        print("\nPress any key to progress to the next image")
    try:
        for path in list_calibration_images(images_dir):
            print(f"Processing image: {path.name}")
            image = cv2.imread(str(path))
            if image is None:
                print(f"Unable to read image: {path.name}")
                continue
            size = (image.shape[1], image.shape[0])
            if result.image_size is None:
                result.image_size = size
            elif size != result.image_size:
                print(
                    f"Skip {path.name}: size {size[0]}x{size[1]} != "
                    f"{result.image_size[0]}x{result.image_size[1]}"
                )
                continue

            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
            corners = find_corners(gray, pattern_size)
            if corners is None:
                print(f"No corners found in image: {path.name}")
                continue
            result.add(object_points, corners, path.name)

            if review:
                _review(image, pattern_size, corners)
    finally:
        if review:
            cv2.destroyAllWindows()
    return result


def _compute_per_view_errors(object_points, image_points, rvecs, tvecs, camera_matrix, dist_coeffs) -> list[float]:
    per_view = []
    for obj_pts, img_pts, rvec, tvec in zip(object_points, image_points, rvecs, tvecs):
        proj, _ = cv2.projectPoints(obj_pts, rvec, tvec, camera_matrix, dist_coeffs)
        diff = img_pts.reshape(-1, 2) - proj.reshape(-1, 2)
        per_view.append(float(np.sqrt(np.mean(np.sum(diff * diff, axis=1)))))
    return per_view


def solve_calibration(correspondences: Correspondences, image_size=None) -> CalibrationResult:
    """Run the calibration solver once over every collected correspondence.

    Raises CalibrationError when nothing was collected; cv2.error from the
    solver is left to the caller.
    """
    if not correspondences:
        raise CalibrationError("no chessboard corners were found in any calibration image")
    if image_size is None:
        image_size = correspondences.image_size or FALLBACK_IMAGE_SIZE
    image_size = (int(image_size[0]), int(image_size[1]))

    rms, camera_matrix, dist_coeffs, rvecs, tvecs = cv2.calibrateCamera(
        correspondences.object_points,
        correspondences.image_points,
        image_size,
        None,
        None,
    )
    per_view_errors = _compute_per_view_errors(
        correspondences.object_points,
        correspondences.image_points,
        rvecs,
        tvecs,
        camera_matrix,
        dist_coeffs,
    )
    return CalibrationResult(
        reprojection_error=float(rms),
        camera_matrix=camera_matrix,
        dist_coeffs=dist_coeffs,
        rvecs=rvecs,
        tvecs=tvecs,
        image_size=image_size,
        files=list(correspondences.files),
        per_view_errors=per_view_errors,
    )


def report_calibration(result: CalibrationResult) -> None:
    print()
    print(f"Image size: {result.image_size[0]}x{result.image_size[1]}")
    print(f"Frames used: {len(result.files)}")
    print(f"RMS Projection Error: {result.reprojection_error}\n")
    print(f"Camera Matrix:\n{result.camera_matrix}\n")
    print(f"Distortion Coefficients:\n{result.dist_coeffs}\n")
    print(f"Rotation Vectors:\n{np.hstack(result.rvecs).T}\n")
    print(f"Translation Vectors:\n{np.hstack(result.tvecs).T}\n")
    print("Per-image reprojection error:")
    for name, err in zip(result.files, result.per_view_errors):
        print(f"  {name}: {err:.4f}")
    print()


def generate_calibration(
    images_dir: Path,
    output_path: Path,
    pattern_size=DEFAULT_PATTERN_SIZE,
    square_size: float = DEFAULT_SQUARE_SIZE,
    review: bool = True,
) -> CalibrationResult:
    """Calibrate from the images in `images_dir` and persist the intrinsics."""
    correspondences = collect_correspondences(images_dir, pattern_size, square_size, review)
    result = solve_calibration(correspondences)
    report_calibration(result)
    save_calibration(
        output_path,
        result.camera_matrix,
        result.dist_coeffs,
        image_size=result.image_size,
        reprojection_error=result.reprojection_error,
    )
    print(f"Wrote calibration to {output_path}")
    return result
