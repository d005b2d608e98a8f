# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Entry points for the ``kobuild build`` CLI command.
"""
from __future__ import annotations

import argparse
import signal
import sys
from types import FrameType
from typing import Optional

from . import kobo
from .common import Builder, builds
from ..common import (
    DEFAULT_BUILD_KIND,
    KOBO,
    BuildConfig,
    BuildFailure,
    KobuildException,
)


def platform_builder(root: Optional[str] = None) -> Builder:
    """
    Return the target's builder rooted at ``root``.
    """
    build = builds.builds[KOBO]
    build.set_root(root)
    return build


def build_kind(value: str) -> str:
    """
    Validate a build kind given on the command line.
    """
    if not value or value in (".", "..") or "/" in value or "\\" in value:
        raise argparse.ArgumentTypeError(f"Invalid build kind: {value!r}")
    return value


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """
    Add the options every command working on the third-party tree takes.
    """
    parser.add_argument(
        "--root",
        default=None,
        help=(
            "The directory holding the third-party checkouts "
            "[default: $KOBUILD_ROOT or the current directory]"
        ),
    )
    parser.add_argument(
        "--kind",
        default=DEFAULT_BUILD_KIND,
        type=build_kind,
        help="The build kind, e.g. release or debug [default: %(default)s]",
    )


def setup_parser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    """
    Setup the subparser for the ``build`` command.

    :param subparsers: The subparsers object returned from ``add_subparsers``
    :type subparsers: argparse._SubParsersAction
    """
    build_subparser = subparsers.add_parser(
        "build", description="Build the third-party packages and link libmupdf.so"
    )
    build_subparser.set_defaults(func=main)
    add_common_arguments(build_subparser)
    build_subparser.add_argument(
        "packages",
        metavar="PACKAGE",
        nargs="*",
        help=(
            "Packages to build, in the given order. Dependencies of the "
            "requested packages are not added [default: every package]"
        ),
    )
    build_subparser.add_argument(
        "--timeout",
        default=None,
        type=float,
        help="Seconds each package may take before it is killed [default: no limit]",
    )
    build_subparser.add_argument(
        "--no-link",
        default=False,
        action="store_true",
        help="Do not link libmupdf.so after mupdf is built.",
    )
    build_subparser.add_argument(
        "--strict-patches",
        default=False,
        action="store_true",
        help=(
            "Fail when a package's kobo.patch is already applied instead of "
            "skipping it."
        ),
    )
    build_subparser.add_argument(
        "--no-system-libs",
        default=False,
        action="store_true",
        help="Let packages use their bundled copies of other libraries.",
    )
    build_subparser.add_argument(
        "--no-pretty",
        default=False,
        action="store_true",
        help="Log build output to stderr instead of displaying a simplified status.",
    )
    build_subparser.add_argument(
        "--log-level",
        default="warning",
        choices=(
            "error",
            "warning",
            "info",
            "debug",
        ),
        help="Log level determines how verbose the logs will be.",
    )


def main(args: argparse.Namespace) -> None:
    """
    The entrypoint to the ``build`` command.

    :param args: The arguments to the command
    :type args: ``argparse.Namespace``
    """
    build = platform_builder(args.root)
    build.strict_patches = args.strict_patches
    config = BuildConfig(
        build_kind=args.kind,
        use_system_libs=not args.no_system_libs,
        timeout=args.timeout,
    )
    steps = None
    if args.packages:
        steps = [_.strip() for _ in args.packages]

    def signal_handler(_signal: int, frame: Optional[FrameType]) -> None:
        sys.exit(1)

    signal.signal(signal.SIGINT, signal_handler)

    try:
        report = build(
            steps=steps,
            config=config,
            link=not args.no_link,
            show_ui=not args.no_pretty,
            log_level=args.log_level.upper(),
        )
    except BuildFailure as exc:
        sys.stderr.write("The following failure was reported\n")
        sys.stderr.write("=" * 20 + f" {exc.package} " + "=" * 20 + "\n")
        sys.stderr.write(build.log_tail(exc.package) + "\n\n")
        sys.stderr.write(f"{exc}\n")
        sys.stderr.flush()
        sys.exit(1)
    except KobuildException as exc:
        sys.stderr.write(f"{exc}\n")
        sys.stderr.flush()
        sys.exit(1)

    print(f"Built {len(report.packages)} package(s) for {config.build_kind}")
    if report.artifact is not None:
        print(f"Artifact: {report.artifact}")


__all__ = ["kobo", "platform_builder", "setup_parser", "main"]
