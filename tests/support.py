"""
Shared helpers for the test suite: a scripted capture device and synthetic boards.
"""

import contextlib
from unittest import mock

import cv2
import numpy as np


class FakeCapture:
    """Stands in for cv2.VideoCapture, serving a fixed list of frames."""

    def __init__(self, frames, width=None, height=None):
        self.frames = list(frames)
        self.reads = 0
        self.released = False
        if frames and width is None:
            height, width = frames[0].shape[:2]
        self.width = width or 0
        self.height = height or 0

    def isOpened(self):
        return True

    def read(self):
        if self.reads >= len(self.frames):
            return False, None
        frame = self.frames[self.reads]
        self.reads += 1
        return True, frame

    def get(self, prop):
        if prop == cv2.CAP_PROP_FRAME_WIDTH:
            return float(self.width)
        if prop == cv2.CAP_PROP_FRAME_HEIGHT:
            return float(self.height)
        return 0.0

    def release(self):
        self.released = True


def blank_frames(count, width=320, height=240):
    return [np.full((height, width, 3), 128, dtype=np.uint8) for _ in range(count)]


def chessboard_image(pattern_size=(13, 8), square_px=40, margin_px=60):
    """BGR image of a chessboard with `pattern_size` interior corners."""
    cols, rows = pattern_size[0] + 1, pattern_size[1] + 1
    height = rows * square_px + 2 * margin_px
    width = cols * square_px + 2 * margin_px
    image = np.full((height, width), 255, dtype=np.uint8)
    for r in range(rows):
        for c in range(cols):
            if (r + c) % 2 == 0:
                y0 = margin_px + r * square_px
                x0 = margin_px + c * square_px
                image[y0 : y0 + square_px, x0 : x0 + square_px] = 0
    image = cv2.GaussianBlur(image, (3, 3), 0)
    return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)


@contextlib.contextmanager
def patched_gui(keys=()):
    """Replace OpenCV window calls; waitKey returns `keys` in turn, then ESC."""
    key_iter = iter(keys)

    def wait_key(delay=0):
        return next(key_iter, 27)

    with mock.patch("cv2.namedWindow"), mock.patch("cv2.imshow") as imshow, mock.patch(
        "cv2.destroyAllWindows"
    ) as destroy, mock.patch("cv2.waitKey", side_effect=wait_key) as wait:
        yield mock.Mock(imshow=imshow, waitKey=wait, destroyAllWindows=destroy)


def warped_chessboard(corner_offsets, pattern_size=(13, 8)):
    """Chessboard seen at an angle: image corners moved by `corner_offsets`.

    Offsets are (dx, dy) for the top-left, top-right, bottom-right and
    bottom-left image corners, in that order.
    """
    board = chessboard_image(pattern_size)
    height, width = board.shape[:2]
    src = np.float32([[0, 0], [width, 0], [width, height], [0, height]])
    dst = src + np.float32(corner_offsets)
    homography = cv2.getPerspectiveTransform(src, dst)
    return cv2.warpPerspective(
        board,
        homography,
        (width, height),
        flags=cv2.INTER_LINEAR,
        borderValue=(255, 255, 255),
    )
