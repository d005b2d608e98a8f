# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
The ``kobuild link`` command.
"""
from __future__ import annotations

import argparse
import logging
import sys

from .build import add_common_arguments, platform_builder
from .common import BuildConfig, KobuildException

log: logging.Logger = logging.getLogger(__name__)


def setup_parser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    """
    Setup the subparser for the ``link`` command.

    :param subparsers: The subparsers object returned from ``add_subparsers``
    :type subparsers: argparse._SubParsersAction
    """
    subparser = subparsers.add_parser(
        "link", description="Link libmupdf.so from an already built mupdf"
    )
    subparser.set_defaults(func=main)
    add_common_arguments(subparser)


def main(args: argparse.Namespace) -> None:
    """
    The entrypoint into the ``kobuild link`` command.

    :param args: The args passed to the command
    :type args: argparse.Namespace
    """
    logging.basicConfig(level=logging.INFO)
    build = platform_builder(args.root)
    try:
        artifact = build.link(BuildConfig(build_kind=args.kind))
    except KobuildException as exc:
        log.error("%s", exc)
        sys.exit(1)
    print(f"Artifact: {artifact}")
