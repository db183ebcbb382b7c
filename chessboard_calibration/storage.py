"""Read and write the persisted camera calibration."""

from __future__ import annotations

import json
import os
from pathlib import Path

import cv2
import numpy as np

DEFAULT_CALIBRATION_FILE = "calibration.xml"
CAMERA_MATRIX_KEY = "Camera-Matrix"
DIST_COEFFS_KEY = "Distortion-Coefficients"
FILE_STORAGE_SUFFIXES = (".xml", ".yml", ".yaml")
JSON_SUFFIX = ".json"
SUPPORTED_SUFFIXES = FILE_STORAGE_SUFFIXES + (JSON_SUFFIX,)
# Coefficient counts OpenCV distortion models accept.
DIST_COEFFS_COUNTS = (4, 5, 8, 12, 14)


class CalibrationFileError(Exception):
    """The calibration file is missing, unreadable or incomplete."""


def _atomic_write_json(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
    os.replace(tmp_path, path)


def save_calibration(
    path,
    camera_matrix,
    dist_coeffs,
    image_size=None,
    reprojection_error: float | None = None,
) -> Path:
    """Persist the camera matrix and distortion coefficients, overwriting `path`.

    XML/YAML files use OpenCV's FileStorage layout; JSON files also carry the
    image size and reprojection error when they are known.
    """
    path = Path(path)
    camera_matrix = np.asarray(camera_matrix, dtype=np.float64)
    dist_coeffs = np.asarray(dist_coeffs, dtype=np.float64)
    suffix = path.suffix.lower()

    if suffix == JSON_SUFFIX:
        payload = {
            "camera_matrix": camera_matrix.tolist(),
            "dist_coeffs": dist_coeffs.tolist(),
        }
        if image_size is not None:
            payload["image_size"] = [int(image_size[0]), int(image_size[1])]
        if reprojection_error is not None:
            payload["reprojection_error"] = float(reprojection_error)
        _atomic_write_json(path, payload)
        return path

    if suffix not in FILE_STORAGE_SUFFIXES:
        raise CalibrationFileError(
            f"Unsupported calibration file type '{path.suffix}' (use .xml, .yml or .json)"
        )
    path.parent.mkdir(parents=True, exist_ok=True)
    storage = cv2.FileStorage(str(path), cv2.FILE_STORAGE_WRITE)
    try:
        storage.write(CAMERA_MATRIX_KEY, camera_matrix)
        storage.write(DIST_COEFFS_KEY, dist_coeffs)
    finally:
        storage.release()
    return path


def _load_json(path: Path):
    try:
        with path.open("r", encoding="utf-8") as handle:
            calib = json.load(handle)
    except (OSError, ValueError) as exc:
        raise CalibrationFileError(f"Unable to read {path}: {exc}") from exc
    if not isinstance(calib, dict):
        raise CalibrationFileError(f"{path} does not contain a calibration object")
    missing = [key for key in ("camera_matrix", "dist_coeffs") if calib.get(key) is None]
    if missing:
        raise CalibrationFileError(f"{path} is missing: {', '.join(missing)}")
    try:
        camera_matrix = np.array(calib["camera_matrix"], dtype=np.float64)
        dist_coeffs = np.array(calib["dist_coeffs"], dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise CalibrationFileError(f"{path} holds non-numeric calibration values: {exc}") from exc
    return camera_matrix, dist_coeffs


def _load_file_storage(path: Path):
    try:
        storage = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
    except cv2.error as exc:
        raise CalibrationFileError(f"Unable to read {path}: {exc}") from exc
    try:
        if not storage.isOpened():
            raise CalibrationFileError(f"Unable to read {path}")
        camera_matrix = storage.getNode(CAMERA_MATRIX_KEY).mat()
        dist_coeffs = storage.getNode(DIST_COEFFS_KEY).mat()
    finally:
        storage.release()
    if camera_matrix is None or dist_coeffs is None:
        raise CalibrationFileError(
            f"{path} is missing {CAMERA_MATRIX_KEY} or {DIST_COEFFS_KEY}"
        )
    return camera_matrix.astype(np.float64), dist_coeffs.astype(np.float64)


def load_calibration(path):
    """Return `(camera_matrix, dist_coeffs)` read from `path`."""
    path = Path(path)
    if not path.is_file():
        raise CalibrationFileError(f"Calibration file not found: {path}")
    if path.suffix.lower() == JSON_SUFFIX:
        camera_matrix, dist_coeffs = _load_json(path)
    else:
        camera_matrix, dist_coeffs = _load_file_storage(path)
    if dist_coeffs.ndim == 1:
        dist_coeffs = dist_coeffs.reshape(1, -1)
    if camera_matrix.shape != (3, 3):
        raise CalibrationFileError(
            f"{path}: camera matrix must be 3x3, got {camera_matrix.shape}"
        )
    if (
        dist_coeffs.ndim != 2
        or 1 not in dist_coeffs.shape
        or dist_coeffs.size not in DIST_COEFFS_COUNTS
    ):
        raise CalibrationFileError(
            f"{path}: distortion coefficients must be a 1xN vector with N in "
            f"{DIST_COEFFS_COUNTS}, got shape {dist_coeffs.shape}"
        )
    return camera_matrix, dist_coeffs
