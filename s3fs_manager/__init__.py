"""
s3fs-manager: mount S3/MinIO buckets with s3fs and keep /etc/fstab in step
with /proc/mounts.
"""

__version__ = "2.0.0"
