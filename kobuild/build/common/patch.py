# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Apply the target specific patch shipped in a package checkout.
"""
from __future__ import annotations

import logging
import pathlib
from typing import List, Optional

from kobuild.common import PATCH_NAME, PatchError, PathLike, ProcessRunner

log = logging.getLogger(__name__)

PATCH_MISSING = "missing"
PATCH_APPLIED = "applied"
PATCH_ALREADY_APPLIED = "already-applied"


def find_patch(source: PathLike, name: str = PATCH_NAME) -> Optional[pathlib.Path]:
    """
    Return the package's patch file, or None when the package has none.
    """
    patch = pathlib.Path(source) / name
    if patch.is_file():
        return patch
    return None


def _patch_cmd(name: str, *extra: str) -> List[str]:
    return ["patch", "-p1", "--batch", "-i", name, *extra]


def apply_patch(
    source: PathLike,
    runner: ProcessRunner,
    name: str = PATCH_NAME,
    strict: bool = False,
) -> str:
    """
    Apply a unified diff, with one leading path component stripped, to a package.

    A forward dry run decides whether the patch applies. When it does not, a
    reverse dry run tells an already patched tree apart from a conflicting or
    malformed patch.

    :param source: The package checkout
    :type source: str
    :param runner: Runs the ``patch`` commands
    :type runner: ``kobuild.common.ProcessRunner``
    :param name: The patch file name inside the checkout
    :type name: str
    :param strict: Treat an already applied patch as an error
    :type strict: bool

    :raises PatchError: If the patch can not be applied, or was already
        applied and ``strict`` is set

    :return: One of ``PATCH_MISSING``, ``PATCH_APPLIED`` or ``PATCH_ALREADY_APPLIED``
    :rtype: str
    """
    source = pathlib.Path(source)
    if find_patch(source, name) is None:
        log.debug("No %s in %s", name, source)
        return PATCH_MISSING

    forward = runner(_patch_cmd(name, "--forward", "--dry-run"), cwd=source)
    if forward.ok:
        result = runner(_patch_cmd(name, "--forward"), cwd=source)
        if not result.ok:
            raise PatchError(f"Applying {name} to {source.name} failed:\n{result.output}")
        log.info("Applied %s to %s", name, source.name)
        return PATCH_APPLIED

    reverse = runner(_patch_cmd(name, "-R", "--dry-run"), cwd=source)
    if reverse.ok:
        if strict:
            raise PatchError(
                f"{name} is already applied to {source.name}, "
                "restore a clean checkout and run again"
            )
        log.warning("%s is already applied to %s, skipping", name, source.name)
        return PATCH_ALREADY_APPLIED

    raise PatchError(f"{name} does not apply to {source.name}:\n{forward.output}")
