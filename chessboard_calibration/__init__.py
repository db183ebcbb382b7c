"""
Chessboard camera calibration: capture photos, compute intrinsics, preview undistorted video.
"""

__version__ = "0.1.0"
