# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
The entrypoint into kobuild.
"""

from argparse import ArgumentParser

from . import build, check, link, packages
from .common import __version__


def setup_cli():
    """
    Build the argparser with its subparsers.

    The modules with commands to add must specify a setup_parser function
    that takes in the subparsers object from `argparse.add_subparsers()`

    :return: The fully setup argument parser
    :rtype: ``argparse.ArgumentParser``
    """
    argparser = ArgumentParser(
        prog="kobuild",
        description="Build the Kobo third-party library chain and libmupdf.so",
    )
    argparser.add_argument("--version", action="version", version=__version__)
    subparsers = argparser.add_subparsers()

    modules_to_setup = [
        build,
        link,
        check,
        packages,
    ]
    for mod in modules_to_setup:
        mod.setup_parser(subparsers)

    return argparser


def main(argv=None):
    """
    Run the kobuild cli and disbatch to subcommands.
    """
    parser = setup_cli()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        parser.exit(1, "\nNo subcommand given...\n\n")
    args.func(args)


if __name__ == "__main__":
    main()
