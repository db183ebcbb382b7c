"""Command-line entry point: acquire and calibrate, or preview undistorted video."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import cv2

from .calibrate import (
    DEFAULT_PATTERN_SIZE,
    DEFAULT_SQUARE_SIZE,
    CalibrationError,
    generate_calibration,
)
from .capture import (
    BACKENDS,
    DEFAULT_BACKEND,
    CameraUnavailableError,
    ImagesDirError,
    ImagesDirNotEmptyError,
    acquire_calibration_images,
    open_camera,
    prepare_images_dir,
    resolve_images_dir,
)
from .preview import DEFAULT_ALPHA, run_live_preview
from .storage import DEFAULT_CALIBRATION_FILE, SUPPORTED_SUFFIXES, CalibrationFileError

DEFAULT_PAD_WIDTH = 0


class _UsageError(Exception):
    pass


class _ArgumentParser(argparse.ArgumentParser):
    """Reports bad usage to the caller instead of exiting with status 2."""

    def error(self, message):
        raise _UsageError(message)


def _pattern_size(value: str) -> tuple[int, int]:
    try:
        cols, rows = (int(part) for part in value.lower().split("x"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected COLSxROWS, got '{value}'")
    if cols < 2 or rows < 2:
        raise argparse.ArgumentTypeError("pattern needs at least 2x2 interior corners")
    return cols, rows


def _build_parser(prog: str | None = None) -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog=prog,
        description=(
            "Capture chessboard photos and compute camera calibration, "
            "or preview live video undistorted with a saved calibration."
        ),
    )
    command = parser.add_mutually_exclusive_group(required=True)
    command.add_argument(
        "-c",
        nargs=2,
        metavar=("CAMERA", "IMAGES_DIR"),
        dest="calibrate",
        help="Capture images from CAMERA into IMAGES_DIR (relative to the working directory), then calibrate.",
    )
    command.add_argument(
        "-t",
        type=int,
        metavar="CAMERA",
        dest="preview",
        help="Show live video from CAMERA undistorted with the saved calibration.",
    )
    parser.add_argument(
        "-d",
        action="store_true",
        dest="delete_existing",
        help="Delete existing entries in IMAGES_DIR before capturing.",
    )
    parser.add_argument(
        "--calibration",
        default=DEFAULT_CALIBRATION_FILE,
        help=f"Calibration file (.xml, .yml or .json). Default: {DEFAULT_CALIBRATION_FILE} in the working directory.",
    )
    parser.add_argument(
        "--pattern",
        type=_pattern_size,
        default=DEFAULT_PATTERN_SIZE,
        help=f"Interior chessboard corners as COLSxROWS. Default: {DEFAULT_PATTERN_SIZE[0]}x{DEFAULT_PATTERN_SIZE[1]}.",
    )
    parser.add_argument(
        "--square-size",
        type=float,
        default=DEFAULT_SQUARE_SIZE,
        help=f"Chessboard square side length in your chosen unit. Default: {DEFAULT_SQUARE_SIZE}.",
    )
    parser.add_argument(
        "--pad-width",
        type=int,
        default=DEFAULT_PAD_WIDTH,
        help=(
            "Zero-pad image counters to this many digits so file names sort in "
            f"capture order. Default: {DEFAULT_PAD_WIDTH} (no padding)."
        ),
    )
    parser.add_argument(
        "--review",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Show detected corners for each image and wait for a key. Default: on.",
    )
    parser.add_argument(
        "--alpha",
        type=float,
        default=DEFAULT_ALPHA,
        help=f"Free scaling for the undistorted view (0=crop, 1=keep all). Default: {DEFAULT_ALPHA}.",
    )
    parser.add_argument(
        "--backend",
        choices=sorted(BACKENDS),
        default=DEFAULT_BACKEND,
        help=f"Video capture backend. Default: {DEFAULT_BACKEND}.",
    )
    return parser


def _camera_index(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise _UsageError(f"camera index must be an integer, got '{value}'")


def _acquire_and_calibrate(args: argparse.Namespace, calibration_path: Path) -> int:
    camera_index = _camera_index(args.calibrate[0])
    try:
        images_dir = resolve_images_dir(Path.cwd(), args.calibrate[1])
        removed = prepare_images_dir(images_dir, args.delete_existing)
    except ImagesDirNotEmptyError as exc:
        print(exc)
        print("Perhaps add the -d option and retry")
        return 0
    except ImagesDirError as exc:
        print(exc)
        return 0
    if removed:
        print(f"The existing calibration images in {images_dir} have been deleted")

    capture = open_camera(camera_index, args.backend)
    try:
        count = acquire_calibration_images(capture, images_dir, args.pad_width)
    finally:
        capture.release()
    print(f"Acquired {count} calibration images")

    # Overwrites any previous calibration file.
    try:
        generate_calibration(
            images_dir,
            calibration_path,
            pattern_size=args.pattern,
            square_size=args.square_size,
            review=args.review,
        )
        print("Successfully generated the camera calibration parameters")
    except (cv2.error, CalibrationError, CalibrationFileError) as exc:
        print("Unable to generate the camera calibration parameters")
        print(f"Reason: {exc}")
    return 0


def _live_preview(args: argparse.Namespace, calibration_path: Path) -> int:
    capture = open_camera(args.preview, args.backend)
    try:
        run_live_preview(capture, calibration_path, args.alpha)
    finally:
        capture.release()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    if argv is None:
        argv = sys.argv[1:]

    try:
        args = parser.parse_args(argv)
        if args.delete_existing and args.calibrate is None:
            raise _UsageError("-d is only valid with -c")
        if args.pad_width < 0:
            raise _UsageError("--pad-width must be >= 0")
        if args.square_size <= 0:
            raise _UsageError("--square-size must be > 0")
        if Path(args.calibration).suffix.lower() not in SUPPORTED_SUFFIXES:
            raise _UsageError(
                f"--calibration must end with one of {', '.join(SUPPORTED_SUFFIXES)}"
            )

        calibration_path = Path.cwd() / args.calibration
        if args.calibrate is not None:
            return _acquire_and_calibrate(args, calibration_path)
        return _live_preview(args, calibration_path)
    except _UsageError as exc:
        if argv:
            print(f"Invalid arguments: {exc}")
        parser.print_help()
        return 0
    except CameraUnavailableError as exc:
        print(exc)
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
