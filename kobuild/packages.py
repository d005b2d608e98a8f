# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
The ``kobuild list`` command.
"""
from __future__ import annotations

import argparse

from .build import platform_builder


def setup_parser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    """
    Setup the subparser for the ``list`` command.

    :param subparsers: The subparsers object returned from ``add_subparsers``
    :type subparsers: argparse._SubParsersAction
    """
    subparser = subparsers.add_parser(
        "list", description="List the packages in build order"
    )
    subparser.set_defaults(func=main)
    subparser.add_argument(
        "--root",
        default=None,
        help="The directory holding the third-party checkouts",
    )


def main(args: argparse.Namespace) -> None:
    """
    Print every package with its position in the sequence.

    :param args: The args passed to the command
    :type args: argparse.Namespace
    """
    build = platform_builder(args.root)
    for ordinal, package, patched in build.describe():
        marker = f" ({package.patch})" if patched else ""
        print(f"{ordinal:2d} {package.name}{marker}")
