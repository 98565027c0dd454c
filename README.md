# slamkit

The mathematical building blocks of visual SLAM, written on top of NumPy
and Pillow.

## What is inside

| Module | Purpose |
| --- | --- |
| `slamkit.geometry` | `Quaternion`, `Isometry`, `angle_axis_to_matrix`, `euler_angles_zyx`, `format_rotation_matrix`, `format_vector` |
| `slamkit.lie` | The `SO3` and `SE3` groups with `exp`, `log`, `hat`, `vee`, `inverse` and composition |
| `slamkit.matching` | `hamming_distance`, brute-force `match_descriptors` and the distance-based `filter_matches` |
| `slamkit.epipolar` | Fundamental, essential and homography matrices, `recover_pose`, `estimate_pose_2d2d`, `triangulate` |
| `slamkit.icp` | 3D-3D alignment: `estimate_pose_svd` and Gauss-Newton `refine_pose` |
| `slamkit.pnp` | `backproject`, `project`, `solve_pnp` and `bundle_adjustment` |
| `slamkit.curve_fitting` | Fitting `y = exp(a·x² + b·x + c)` by Gauss-Newton or Levenberg-Marquardt |
| `slamkit.pointcloud` | RGB-D frames to point clouds, statistical outlier and voxel filters, binary PCD output |
| `slamkit.dense_mapping` | Monocular dense depth estimation with epipolar search, NCC matching and a Gaussian depth filter |
| `slamkit.cli` | A greeting and basic image information |

## Installation

```
pip install .
```

With the test suite:

```
pip install ".[test]"
pytest
```

## Library use

Rotations and rigid-body transforms. `Isometry` is immutable: `rotate` and
`pretranslate` return a new transform.

```python
import math
from slamkit.geometry import Quaternion, Isometry, euler_angles_zyx

q = Quaternion.from_angle_axis(math.pi / 4, [0, 0, 1])
print(q.rotate([1, 0, 0]))            # (1, 0, 0) rotated 45 degrees about Z
print(q.coeffs())                     # x, y, z, w

T = Isometry.identity().rotate(q).pretranslate([1, 3, 4])
print(T.matrix())                     # 4x4 homogeneous matrix
print(T * [1, 0, 0])                  # R v + t
print(euler_angles_zyx(q.to_matrix()))  # yaw, pitch, roll
```

Lie groups and their algebras:

```python
from slamkit.lie import SO3, SE3

R = SO3.exp([0, 0, 1.5707963])
print(R.log())                        # back to the rotation vector
print(SO3.vee(SO3.hat(R.log())))

T = SE3(R, [1, 0, 0])
print(T.log())                        # translation part first, rotation second
print((SE3.exp([1e-4, 0, 0, 0, 0, 0]) * T).matrix())
```

Matching binary descriptors (rows of bytes) and keeping the good matches,
those no farther than twice the smallest distance or 30 bits:

```python
from slamkit.matching import match_descriptors, filter_matches

matches = filter_matches(match_descriptors(descriptors1, descriptors2))
```

Relative pose between two views from matched pixel coordinates (at least
eight matches). The camera matrix defaults to fx 520.9, fy 521.0,
cx 325.1, cy 249.7:

```python
from slamkit.epipolar import estimate_pose_2d2d, triangulate

pose = estimate_pose_2d2d(points1, points2, camera_matrix)
print(pose.rotation, pose.translation, pose.inliers)
print(pose.fundamental, pose.essential, pose.homography)
points_3d = triangulate(points1, points2, pose.rotation, pose.translation, camera_matrix)
```

Aligning two sets of 3D points:

```python
from slamkit.icp import estimate_pose_svd, refine_pose

R, t = estimate_pose_svd(points1, points2)   # points1 ≈ R · points2 + t
R, t = refine_pose(points1, points2, R, t, 10)
```

Camera pose from 3D-2D correspondences, then joint refinement of pose and
points:

```python
from slamkit.pnp import solve_pnp, bundle_adjustment

R, t = solve_pnp(points_3d, points_2d, camera_matrix)
R, t, refined_points = bundle_adjustment(points_3d, points_2d, camera_matrix, R, t, 100)
```

Building a point cloud from RGB-D frames. The directory holds `pose.txt`
(one `tx ty tz qx qy qz qw` record per frame), `color/<i>.png` and
`depth/<i>.pgm` for i = 1..count:

```python
from slamkit.pointcloud import CameraIntrinsics, join_map, save_pcd

cloud = join_map("data", 5, CameraIntrinsics(), 7000, True)
print(len(cloud))
save_pcd("map.pcd", cloud)
```

## Commands

Print the greeting, or report the width, height and channel count of an
image:

```
slamkit
slamkit hello
slamkit image picture.png
```

Generate noisy samples of `exp(a·x² + b·x + c)` and fit the three
parameters. Options: `--a`, `--b`, `--c` (defaults 1, 2, 1), `--count`,
`--sigma`, `--seed`, `--iterations` and `--method lm|gn`:

```
slamkit-curve-fitting
slamkit-curve-fitting --method gn --sigma 0.5
```

Estimate the depth map of the first frame of a monocular sequence with known
poses. The dataset directory holds an `images/` folder and the file
`first_200_frames_traj_over_table_input_sequence.txt`, each line of which is
an image name followed by `tx ty tz qx qy qz qw` (camera-to-world). Images
must be 640×480; they are read as greyscale. The depth map is written,
rounded and clipped to 0–255, as an 8-bit PNG (`--output`, default
`depth.png`):

```
slamkit-dense-mapping path/to/dataset
```

## What it does not do

- It detects no keypoints and computes no descriptors: matching works on
  descriptor arrays and pose estimation on pixel coordinates that you supply.
- It opens no windows; nothing is drawn or displayed.
- It has no place-recognition vocabulary or loop-closure database, and no
  occupancy-map output; point clouds are saved as PCD files only.
</br>