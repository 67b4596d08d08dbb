"""TSDF voxel maps, scan preprocessing, IMU accumulation and scan-to-map registration for lidar SLAM."""

__version__ = "0.1.0"