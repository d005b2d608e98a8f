# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Check that everything a build needs is in place.
"""
from __future__ import annotations

import argparse
import logging
import sys

from .build import platform_builder

log: logging.Logger = logging.getLogger(__name__)


def setup_parser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    """
    Setup the subparser for the ``kobuild check`` command.

    :param subparsers: The subparsers object returned from ``add_subparsers``
    :type subparsers: argparse._SubParsersAction
    """
    subparser = subparsers.add_parser(
        "check", description="Check the toolchain and third-party checkouts"
    )
    subparser.set_defaults(func=main)
    subparser.add_argument(
        "--root",
        default=None,
        help="The directory holding the third-party checkouts",
    )
    subparser.add_argument(
        "packages",
        metavar="PACKAGE",
        nargs="*",
        help="Only check these packages [default: every package]",
    )


def main(args: argparse.Namespace) -> None:
    """
    The entrypoint into the ``kobuild check`` command.

    :param args: The args passed to the command
    :type args: argparse.Namespace
    """
    logging.basicConfig(level=logging.INFO)
    build = platform_builder(args.root)
    failures = build.check_prereqs(args.packages or None)
    if failures:
        for failure in failures:
            log.error(failure)
        sys.exit(1)
    log.info("Everything needed to build in %s is in place", build.root)
