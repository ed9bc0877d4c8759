#!/usr/bin/env python3
"""
S3FS Manager

Mount S3/MinIO buckets with s3fs and keep /etc/fstab in step.

Usage:
    s3fs-manager mount -a KEY -s SECRET -b mybucket -p /mnt/data --auto-mount
    s3fs-manager unmount -b mybucket --all
    s3fs-manager list
"""

import argparse
import logging
import sys

from . import cli
from .errors import S3fsManagerError

log = logging.getLogger(__name__)

EPILOG = """\
examples:
  s3fs-manager mount -a mykey -s mysecret -b mybucket
  s3fs-manager mount -b mybucket -p /mnt/data1 --auto-mount
  s3fs-manager mount -b mybucket -p /mnt/data2 --auto-mount
  s3fs-manager unmount -p /mnt/data1
  s3fs-manager unmount -b mybucket --all
  s3fs-manager list

notes:
  --force replaces another bucket's fstab entry at the same path and
  remounts busy mount points. It never touches fstab lines of other
  filesystems; --force-foreign does, deleting e.g. an NFS or disk entry
  at the target path. Use it only when you mean it.

  /etc/fstab is not locked. Do not run several s3fs-manager commands at
  the same time; wrap them in flock(1) if they may overlap.
"""


def _common_parent() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument("--non-interactive", action="store_true",
                        help="Run without prompts")
    parent.add_argument("--no-color", action="store_true",
                        help="Disable colored output")
    parent.add_argument("--debug", action="store_true",
                        help="Enable debug logging")
    return parent


def _target_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-b", "--bucket", help="Bucket name")
    parser.add_argument("-p", "-m", "--path", "--mount-point", dest="path",
                        help="Mount point path")
    parser.add_argument("-f", "--force", action="store_true",
                        help="Force operation (override/unmount)")


def build_parser() -> argparse.ArgumentParser:
    parent = _common_parent()
    parser = argparse.ArgumentParser(
        prog="s3fs-manager",
        description="Multi-bucket s3fs mount manager",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command")

    mount = sub.add_parser("mount", parents=[parent],
                           help="Mount a bucket (creates if not exists)")
    _target_args(mount)
    mount.add_argument("-u", "--url", help="MinIO/S3 server URL")
    mount.add_argument("-a", "--access-key", help="Access key ID")
    mount.add_argument("-s", "--secret-key", help="Secret access key")
    mount.add_argument("-o", "--owner",
                       help="Mount owner (use 'current' for the invoking user)")
    mount.add_argument("--auto-mount", action="store_true", default=None,
                       help="Add to /etc/fstab for boot persistence")
    mount.add_argument("--force-foreign", action="store_true",
                       help="Like --force, and also delete non-s3fs fstab entries "
                            "at the mount path")
    mount.set_defaults(func=cli.cmd_mount)

    unmount = sub.add_parser("unmount", aliases=["umount"], parents=[parent],
                             help="Unmount a bucket or path")
    _target_args(unmount)
    unmount.add_argument("--all", action="store_true",
                         help="Unmount all instances of a bucket")
    unmount.set_defaults(func=cli.cmd_unmount)

    listing = sub.add_parser("list", aliases=["ls"], parents=[parent],
                             help="List all s3fs mounts with relationships")
    listing.set_defaults(func=cli.cmd_list)

    config = sub.add_parser("config", parents=[parent],
                            help="Show configuration and server status")
    config.add_argument("--set", metavar="KEY=VALUE",
                        help="Save a setting to the config file")
    config.set_defaults(func=cli.cmd_config)

    sub.add_parser("help", help="Show this help")
    return parser


def main(argv=None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "debug", False) else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if getattr(args, "no_color", False):
        cli.disable_color()

    if args.command in (None, "help"):
        parser.print_help()
        return

    try:
        args.func(args)
    except S3fsManagerError as e:
        log.debug(f"{args.command} failed", exc_info=True)
        cli.report_error(e)
        sys.exit(1)
    except KeyboardInterrupt:
        print()
        sys.exit(1)


if __name__ == "__main__":
    main()
