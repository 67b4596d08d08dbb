# voxelslam

Building blocks for lidar SLAM on a truncated signed distance field (TSDF)
voxel map:

- a chunked **global map** kept in an SQLite file on disk, with at most 64
  chunks held in memory and the least recently used one written out when
  another is needed;
- a **local map**: a cuboid ring buffer around the sensor that can be shifted
  without copying its contents, saving and loading the affected slabs to and
  from the global map;
- **preprocessing** filters that thin out a scan to at most one point per
  voxel, plus a ring-wise median filter;
- an **IMU accumulator** that integrates angular velocity samples into a
  rotation estimate up to a scan's timestamp;
- a Gauss-Newton **registration** of a scan against the local map, working
  in fixed-point integer arithmetic.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Modules

| Module | Contents |
| --- | --- |
| `voxelslam.linear_solver` | `lu_decomposition`, `lu_solve`, `lu_split`: LU without pivoting |
| `voxelslam.matrix_ops` | `matrix_mul`, `transform_point` for homogeneous transforms |
| `voxelslam.global_map` | `TSDFEntry`, `ActiveChunk`, `GlobalMap`, `floor_divide` |
| `voxelslam.local_map_hw` | `LocalMapHW`, `overflow`: flat-index view of a local map |
| `voxelslam.local_map` | `LocalMap`: the shiftable ring buffer |
| `voxelslam.registration_kernel` | `xi_to_transform`, `registration_step`, `register_scan`, `StepResult`, `RegistrationResult` |
| `voxelslam.preprocessing` | `Preprocessing` and its filters |
| `voxelslam.imu_accumulator` | `ImuSample`, `ImuAccumulator` |
| `voxelslam.registration` | `Registration`, `transform_point_cloud` |

## Usage

### Maps

A `GlobalMap` stores the map in chunks of 64 x 64 x 64 `TSDFEntry` cells
(16-bit `value` and `weight`). Creating one replaces any existing file at
the given path. Used as a context manager it closes the file on exit; it
does **not** write the active chunks first, so call `write_back()` (or
`LocalMap.write_back()`) before leaving the block:

```python
from voxelslam.global_map import GlobalMap, TSDFEntry
from voxelslam.local_map import LocalMap

with GlobalMap("map.sqlite", initial_tsdf_value=600, initial_weight=0) as global_map:
    local_map = LocalMap(201, 201, 95, global_map)

    entry = local_map[(0, 0, 0)]              # TSDFEntry(value=600, weight=0)
    local_map[(1, 2, 3)] = TSDFEntry(-40, 5)
    local_map.shift((10, 0, 0))               # cells leaving the cuboid go to the global map
    local_map.write_back()                    # save every cell and write the chunks to the file
```

`GlobalMap.get_value(pos)` and `set_value(pos, entry)` work on single
global cells; `activate_chunk(chunk_pos)` returns a chunk's structured
array for in-place changes.

Even side lengths of a `LocalMap` are raised to the next odd number, so
there is always a central cell. Indexing a cell outside the cuboid raises
`IndexError`; `in_bounds(pos)` tells whether a position is covered. A shift
by more than the map's size along any axis raises `ValueError`. The
properties `size`, `pos`, `offset`, `data` and `global_map` expose the
state; `copy()`, `swap(other)` and `fill_from(other)` duplicate or exchange
it (`fill_from` raises `ValueError` for maps of a different size).

`local_map.hardware_representation()` returns a `LocalMapHW` that computes
flat indices into `local_map.data` with `get_index`, and reads and writes
cells with `get` and `set`; reads outside the map give `TSDFEntry(0, 0)`
and writes outside it are ignored.

### Preprocessing

Points are integer arrays of shape `(N, 3)`.

```python
from voxelslam.preprocessing import Preprocessing

pre = Preprocessing(map_bounds=(10000, 10000, 3000), resolution=64, scale=1.0)
points = pre.scale_points(raw_points)
reduced = pre.reduction_filter_closest(points)
```

`reduction_filter_closest`, `reduction_filter_average` and
`reduction_filter_voxel_center` drop points at the origin and points whose
absolute coordinates exceed `map_bounds`; they keep, per voxel, the point
closest to the voxel centre, the integer average, or the voxel centre
itself. `reduction_filter_random_point(points, rng)` keeps one random point
per voxel (taking a NumPy generator, or a fresh one if `rng` is `None`) and
drops only points at the origin.

`median_filter(points, rings, window_size)` replaces each point by the
median, by distance to the origin, of its neighbours on the same ring, with
points laid out as `point * rings + ring`. An even `window_size` logs a
warning and returns the points unchanged.

### Registration

`Registration` takes a `collections.deque` of `ImuSample` objects
(timestamp in seconds, angular velocity in rad/s). For each scan it first
applies the rotation accumulated from the samples up to the scan's
timestamp, then refines the pose against the local map:

```python
from collections import deque
import numpy as np
from voxelslam.imu_accumulator import ImuSample
from voxelslam.registration import Registration

imu_buffer = deque()
registration = Registration(
    imu_buffer,
    matrix_resolution=1024,
    map_resolution=64,
    max_iterations=50,
    it_weight_gradient=0.0,
    epsilon=0.01,
)
imu_buffer.append(ImuSample(0.00, (0.0, 0.0, 0.1)))
imu_buffer.append(ImuSample(0.01, (0.0, 0.0, 0.1)))

new_pose, moved_cloud = registration.register_cloud(local_map, cloud, 0.01, np.eye(4))
```

`register_cloud` returns the refined 4x4 pose and the cloud transformed by
it, leaving its arguments unchanged. `registration.mean_iterations` gives
the mean iteration count over the last 100 registrations.

`transform_point_cloud(points, transform)` applies a 4x4 transform to
integer points, rounding halves away from zero.

The lower-level pieces can be used on their own: `register_scan` runs the
iterative registration against a `LocalMapHW` and a data array and returns
a `RegistrationResult` (`transform`, `iterations`); `registration_step`
builds the normal equations of one iteration as a `StepResult` (`h`, `g`,
`error`, `count`); `xi_to_transform` turns a six-element motion vector into
a rotation about a centre followed by a translation.

## What the package does not do

It is a library only: there is no command-line program, no reading of
lidar or IMU devices, no network or message transport, and no threads that
run a mapping pipeline. The global map stores chunks only; it has no
functions for storing poses.