"""Dense monocular depth estimation along known camera trajectories.

Each reference pixel keeps a Gaussian depth estimate. For every new frame the
pixel is searched for along its epipolar line by zero-mean NCC, triangulated,
and fused into the estimate.
"""

from __future__ import annotations

import argparse
import math
from pathlib import Path

import numpy as np
from PIL import Image

from slamkit.geometry import Quaternion
from slamkit.lie import SE3

BORDER = 20
WIDTH = 640
HEIGHT = 480
FX = float(np.float32(481.2))
FY = -480.0
CX = 319.5
CY = 239.5
NCC_WINDOW = 2
NCC_AREA = (2 * NCC_WINDOW + 1) ** 2
MIN_COV = 0.1
MAX_COV = 10.0
INIT_DEPTH = 3.0
INIT_COV = 3.0

_MIN_NCC = 0.85
_SEARCH_STEP = 0.7
_MAX_HALF_LENGTH = 100.0
_MIN_DEPTH = 0.1
_NCC_EPS = 1e-10
_TRAJECTORY = "first_200_frames_traj_over_table_input_sequence.txt"

_OFFSETS = np.array(
    [
        (x, y)
        for x in range(-NCC_WINDOW, NCC_WINDOW + 1)
        for y in range(-NCC_WINDOW, NCC_WINDOW + 1)
    ],
    dtype=float,
)


def read_dataset(path) -> list[tuple[Path, SE3]]:
    """Image paths and camera-to-world poses listed in a dataset's trajectory file.

    Each record is ``image tx ty tz qx qy qz qw``.
    """
    root = Path(path)
    trajectory = root / _TRAJECTORY
    if not trajectory.is_file():
        raise FileNotFoundError(f"trajectory file not found: {trajectory}")
    tokens = trajectory.read_text().split()
    frames = []
    for start in range(0, len(tokens) - 7, 8):
        name = tokens[start]
        tx, ty, tz, qx, qy, qz, qw = (float(t) for t in tokens[start + 1 : start + 8])
        pose = SE3(Quaternion(qw, qx, qy, qz), (tx, ty, tz))
        frames.append((root / "images" / name, pose))
    return frames


def px2cam(pixel) -> np.ndarray:
    """Point on the normalized image plane (z = 1) seen at ``pixel``."""
    u, v = np.asarray(pixel, dtype=float)
    return np.array([(u - CX) / FX, (v - CY) / FY, 1.0])


def cam2px(point) -> np.ndarray:
    """Pixel at which the camera-frame ``point`` is seen."""
    x, y, z = np.asarray(point, dtype=float)
    return np.array([x * FX / z + CX, y * FY / z + CY])


def inside(pixel) -> bool:
    """Whether ``pixel`` keeps clear of the image border."""
    x, y = np.asarray(pixel, dtype=float)
    return bool(
        x >= BORDER and y >= BORDER and x + BORDER < WIDTH and y + BORDER <= HEIGHT
    )


def _bilinear(image: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    height, width = image.shape
    if np.any(xs < 0) or np.any(ys < 0) or np.any(xs > width - 1) or np.any(ys > height - 1):
        raise ValueError("sample position lies outside the image")
    ix = xs.astype(int)
    iy = ys.astype(int)
    ix1 = np.minimum(ix + 1, width - 1)
    iy1 = np.minimum(iy + 1, height - 1)
    xx = xs - np.floor(xs)
    yy = ys - np.floor(ys)
    img = image.astype(float)
    value = (
        (1 - xx) * (1 - yy) * img[iy, ix]
        + xx * (1 - yy) * img[iy, ix1]
        + (1 - xx) * yy * img[iy1, ix]
        + xx * yy * img[iy1, ix1]
    )
    return value / 255.0


def _gray(image, name: str) -> np.ndarray:
    arr = np.asarray(image)
    if arr.ndim != 2:
        raise ValueError(f"{name} must be a single-channel image")
    return arr


def bilinear(image, point) -> float:
    """Grey value at a sub-pixel position, scaled to [0, 1]."""
    img = _gray(image, "image")
    x, y = np.asarray(point, dtype=float)
    return float(_bilinear(img, np.array([x]), np.array([y]))[0])


def ncc(ref, curr, pt_ref, pt_curr) -> float:
    """Zero-mean normalized cross-correlation of the windows around two pixels."""
    ref_img = _gray(ref, "ref")
    curr_img = _gray(curr, "curr")
    p_ref = np.asarray(pt_ref, dtype=float)
    p_curr = np.asarray(pt_curr, dtype=float)
    ref_x = np.trunc(_OFFSETS[:, 0] + p_ref[0]).astype(int)
    ref_y = np.trunc(_OFFSETS[:, 1] + p_ref[1]).astype(int)
    values_ref = ref_img[ref_y, ref_x].astype(float) / 255.0
    values_curr = _bilinear(
        curr_img, _OFFSETS[:, 0] + p_curr[0], _OFFSETS[:, 1] + p_curr[1]
    )
    dr = values_ref - values_ref.sum() / NCC_AREA
    dc = values_curr - values_curr.sum() / NCC_AREA
    numerator = float(dr @ dc)
    return numerator / math.sqrt(float(dr @ dr) * float(dc @ dc) + _NCC_EPS)


def _unit(v: np.ndarray) -> np.ndarray:
    n = float(np.linalg.norm(v))
    return v / n if n > 0 else v


def epipolar_search(ref, curr, t_c_r, pt_ref, depth_mu, depth_cov) -> np.ndarray | None:
    """Best NCC match of ``pt_ref`` along its epipolar line in ``curr``.

    ``depth_cov`` is the standard deviation of the depth estimate; the search
    covers three deviations around the mean. Returns None when no match
    scores at least 0.85.
    """
    p_ref = np.asarray(pt_ref, dtype=float)
    f_ref = _unit(px2cam(p_ref))
    px_mean_curr = cam2px(t_c_r * (f_ref * depth_mu))
    d_min = max(depth_mu - 3 * depth_cov, _MIN_DEPTH)
    d_max = depth_mu + 3 * depth_cov
    px_min_curr = cam2px(t_c_r * (f_ref * d_min))
    px_max_curr = cam2px(t_c_r * (f_ref * d_max))

    epipolar_line = px_max_curr - px_min_curr
    direction = _unit(epipolar_line)
    half_length = min(0.5 * float(np.linalg.norm(epipolar_line)), _MAX_HALF_LENGTH)

    best_ncc = -1.0
    best_px: np.ndarray | None = None
    step = -half_length
    while step <= half_length:
        candidate = px_mean_curr + step * direction
        step += _SEARCH_STEP
        if not inside(candidate):
            continue
        score = ncc(ref, curr, p_ref, candidate)
        if score > best_ncc:
            best_ncc = score
            best_px = candidate
    if best_ncc < _MIN_NCC:
        return None
    return best_px


def update_depth_filter(pt_ref, pt_curr, t_c_r, depth, depth_cov) -> tuple[float, float]:
    """Triangulate a match and fuse it into the depth maps in place.

    Returns the fused depth and variance written at ``pt_ref``.
    """
    p_ref = np.asarray(pt_ref, dtype=float)
    t_r_c = t_c_r.inverse()
    f_ref = _unit(px2cam(p_ref))
    f_curr = _unit(px2cam(pt_curr))

    t = t_r_c.translation
    f2 = t_r_c.rotation_matrix @ f_curr
    b0, b1 = float(t @ f_ref), float(t @ f2)
    a0 = float(f_ref @ f_ref)
    a2 = float(f_ref @ f2)
    a1 = -a2
    a3 = -float(f2 @ f2)
    det = a0 * a3 - a1 * a2
    t_norm = float(np.linalg.norm(t))
    if det == 0 or t_norm == 0:
        raise ValueError("cannot triangulate: the views give no parallax")
    lambda_ref = (a3 * b0 - a1 * b1) / det
    lambda_curr = (-a2 * b0 + a0 * b1) / det
    xm = lambda_ref * f_ref
    xn = t + lambda_curr * f2
    depth_estimation = float(np.linalg.norm((xm + xn) / 2.0))

    p = f_ref * depth_estimation
    a = p - t
    a_norm = float(np.linalg.norm(a))
    alpha = math.acos(float(np.clip(f_ref @ t / t_norm, -1.0, 1.0)))
    beta = math.acos(float(np.clip(-(a @ t) / (a_norm * t_norm), -1.0, 1.0)))
    beta_prime = beta + math.atan(1.0 / FX)
    gamma = math.pi - alpha - beta_prime
    p_prime = t_norm * math.sin(beta_prime) / math.sin(gamma)
    d_cov2 = (p_prime - depth_estimation) ** 2

    row, col = int(p_ref[1]), int(p_ref[0])
    mu = float(depth[row, col])
    sigma2 = float(depth_cov[row, col])
    mu_fuse = (d_cov2 * mu + sigma2 * depth_estimation) / (sigma2 + d_cov2)
    sigma_fuse2 = (sigma2 * d_cov2) / (sigma2 + d_cov2)
    depth[row, col] = mu_fuse
    depth_cov[row, col] = sigma_fuse2
    return mu_fuse, sigma_fuse2


def update(ref, curr, t_c_r, depth, depth_cov) -> int:
    """Refine every unconverged pixel of the depth maps with a new frame.

    Pixels whose variance lies below 0.1 (converged) or above 10 (diverged)
    are left alone. Returns the number of pixels updated.
    """
    ref_img = _gray(ref, "ref")
    curr_img = _gray(curr, "curr")
    for name, arr in (("ref", ref_img), ("curr", curr_img), ("depth", depth), ("depth_cov", depth_cov)):
        if arr.shape != (HEIGHT, WIDTH):
            raise ValueError(f"{name} must have shape {(HEIGHT, WIDTH)}, got {arr.shape}")
    region = depth_cov[BORDER : HEIGHT - BORDER, BORDER : WIDTH - BORDER]
    active = ~((region < MIN_COV) | (region > MAX_COV))
    updated = 0
    for dx, dy in zip(*np.nonzero(active.T)):
        x, y = int(dx) + BORDER, int(dy) + BORDER
        pt_ref = np.array([x, y], dtype=float)
        pt_curr = epipolar_search(
            ref_img,
            curr_img,
            t_c_r,
            pt_ref,
            float(depth[y, x]),
            math.sqrt(float(depth_cov[y, x])),
        )
        if pt_curr is None:
            continue
        try:
            update_depth_filter(pt_ref, pt_curr, t_c_r, depth, depth_cov)
        except ValueError:
            continue
        updated += 1
    return updated


def _load_gray(path: Path) -> np.ndarray:
    with Image.open(path) as img:
        return np.array(img.convert("L"))


def main(argv=None) -> int:
    """Estimate the depth map of the first frame of a dataset and save it."""
    parser = argparse.ArgumentParser(
        description="Dense depth estimation from a monocular sequence with known poses."
    )
    parser.add_argument("dataset", help="path to the test dataset")
    parser.add_argument("--output", default="depth.png")
    args = parser.parse_args(argv)

    try:
        frames = read_dataset(args.dataset)
    except (FileNotFoundError, ValueError):
        frames = []
    if not frames:
        print("Reading image files failed!")
        return 1
    print(f"read total {len(frames)} files.")

    ref_path, pose_ref_twc = frames[0]
    try:
        ref = _load_gray(ref_path)
    except OSError:
        print(f"cannot read the reference image {ref_path}")
        return 1
    depth = np.full((HEIGHT, WIDTH), INIT_DEPTH)
    depth_cov = np.full((HEIGHT, WIDTH), INIT_COV)

    for index, (path, pose_curr_twc) in enumerate(frames[1:], start=1):
        print(f"*** loop {index} ***")
        try:
            curr = _load_gray(path)
        except OSError:
            continue
        t_c_r = pose_curr_twc.inverse() * pose_ref_twc
        update(ref, curr, t_c_r, depth, depth_cov)

    print("estimation returns, saving depth map ...")
    Image.fromarray(np.clip(np.rint(depth), 0, 255).astype(np.uint8)).save(args.output)
    print("done.")
    return 0