"""
Unit tests for calibration persistence.
"""

import json
import tempfile
import unittest
from pathlib import Path

import cv2
import numpy as np

from chessboard_calibration.storage import (
    CAMERA_MATRIX_KEY,
    CalibrationFileError,
    load_calibration,
    save_calibration,
)

CAMERA_MATRIX = np.array(
    [[1402.123456789, 0.0, 958.25], [0.0, 1399.987654321, 541.5], [0.0, 0.0, 1.0]]
)
DIST_COEFFS = np.array([[-0.312345678, 0.1123456, 0.00012345, -0.00054321, -0.0212121]])


class TestRoundTrip(unittest.TestCase):
    """Saved calibrations load back unchanged."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def _round_trip(self, name):
        path = save_calibration(self.tmp / name, CAMERA_MATRIX, DIST_COEFFS)
        camera_matrix, dist_coeffs = load_calibration(path)
        np.testing.assert_allclose(camera_matrix, CAMERA_MATRIX, rtol=1e-12)
        np.testing.assert_allclose(dist_coeffs.ravel(), DIST_COEFFS.ravel(), rtol=1e-12)

    def test_xml_round_trip(self):
        self._round_trip("calibration.xml")

    def test_yaml_round_trip(self):
        self._round_trip("calibration.yml")

    def test_json_round_trip(self):
        self._round_trip("calibration.json")

    def test_xml_uses_named_entries(self):
        path = save_calibration(self.tmp / "calibration.xml", CAMERA_MATRIX, DIST_COEFFS)
        text = path.read_text()
        self.assertIn("<Camera-Matrix", text)
        self.assertIn("<Distortion-Coefficients", text)

    def test_json_metadata(self):
        path = save_calibration(
            self.tmp / "calibration.json",
            CAMERA_MATRIX,
            DIST_COEFFS,
            image_size=(1280, 720),
            reprojection_error=0.25,
        )
        payload = json.loads(path.read_text())
        self.assertEqual(payload["image_size"], [1280, 720])
        self.assertAlmostEqual(payload["reprojection_error"], 0.25)
        self.assertFalse(path.with_name("calibration.json.tmp").exists())

    def test_save_overwrites(self):
        path = self.tmp / "calibration.xml"
        save_calibration(path, np.eye(3), np.zeros((1, 5)))
        save_calibration(path, CAMERA_MATRIX, DIST_COEFFS)
        camera_matrix, _ = load_calibration(path)
        np.testing.assert_allclose(camera_matrix, CAMERA_MATRIX)


class TestLoadErrors(unittest.TestCase):
    """Unusable calibration files raise CalibrationFileError."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_missing_file(self):
        with self.assertRaises(CalibrationFileError):
            load_calibration(self.tmp / "calibration.xml")

    def test_missing_distortion_entry(self):
        path = self.tmp / "calibration.xml"
        storage = cv2.FileStorage(str(path), cv2.FILE_STORAGE_WRITE)
        storage.write(CAMERA_MATRIX_KEY, CAMERA_MATRIX)
        storage.release()
        with self.assertRaises(CalibrationFileError):
            load_calibration(path)

    def test_invalid_json(self):
        path = self.tmp / "calibration.json"
        path.write_text("{not json")
        with self.assertRaises(CalibrationFileError):
            load_calibration(path)

    def test_json_without_dist_coeffs(self):
        path = self.tmp / "calibration.json"
        path.write_text(json.dumps({"camera_matrix": CAMERA_MATRIX.tolist()}))
        with self.assertRaises(CalibrationFileError):
            load_calibration(path)

    def test_json_non_numeric_values(self):
        path = self.tmp / "calibration.json"
        path.write_text(json.dumps({"camera_matrix": "abc", "dist_coeffs": [[0, 0, 0, 0, 0]]}))
        with self.assertRaises(CalibrationFileError):
            load_calibration(path)

    def test_json_ragged_matrix(self):
        path = self.tmp / "calibration.json"
        path.write_text(
            json.dumps({"camera_matrix": [[1, 0], [0]], "dist_coeffs": [[0, 0, 0, 0, 0]]})
        )
        with self.assertRaises(CalibrationFileError):
            load_calibration(path)

    def test_too_few_distortion_coefficients(self):
        path = save_calibration(self.tmp / "calibration.xml", CAMERA_MATRIX, [[0.1, 0.2, 0.3]])
        with self.assertRaises(CalibrationFileError):
            load_calibration(path)

    def test_empty_distortion_coefficients(self):
        path = self.tmp / "calibration.json"
        path.write_text(json.dumps({"camera_matrix": CAMERA_MATRIX.tolist(), "dist_coeffs": []}))
        with self.assertRaises(CalibrationFileError):
            load_calibration(path)

    def test_flat_json_distortion_list_is_accepted(self):
        path = self.tmp / "calibration.json"
        path.write_text(
            json.dumps({"camera_matrix": CAMERA_MATRIX.tolist(), "dist_coeffs": [0.1, 0.0, 0.0, 0.0]})
        )
        _, dist_coeffs = load_calibration(path)
        self.assertEqual(dist_coeffs.shape, (1, 4))

    def test_unsupported_suffix_on_save(self):
        with self.assertRaises(CalibrationFileError):
            save_calibration(self.tmp / "calibration.txt", CAMERA_MATRIX, DIST_COEFFS)


if __name__ == "__main__":
    unittest.main()
