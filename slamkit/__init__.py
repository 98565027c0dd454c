"""Building blocks for visual SLAM: geometry, Lie groups, matching, pose estimation and mapping."""

__version__ = "0.1.0"

__all__ = [
    "cli",
    "curve_fitting",
    "dense_mapping",
    "epipolar",
    "geometry",
    "icp",
    "lie",
    "matching",
    "pnp",
    "pointcloud",
]