# Copyright 2022-2026 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Build functions for specific packages.
"""
from __future__ import annotations

import logging
import shutil
from typing import TYPE_CHECKING, MutableMapping

from kobuild.common import BUILD_SCRIPT, BuildConfig, BuildError, ProcessRunner, runcmd

if TYPE_CHECKING:
    from .builder import Dirs

log = logging.getLogger(__name__)


def yes_no(value: bool) -> str:
    return "yes" if value else "no"


def build_default(
    env: MutableMapping[str, str],
    dirs: Dirs,
    config: BuildConfig,
    runner: ProcessRunner,
) -> None:
    """
    The default build function, runs the package's own ``build-kobo.sh``.

    The build kind is passed as the script's argument, the platform and the
    system libraries policy reach it through ``OS`` and ``USE_SYSTEM_LIBS``
    in ``env``.

    :param env: The environment dictionary
    :type env: dict
    :param dirs: The working directories
    :type dirs: ``kobuild.build.common.Dirs``
    :param config: The settings of this run
    :type config: ``kobuild.common.BuildConfig``
    :param runner: Runs the build commands
    :type runner: ``kobuild.common.ProcessRunner``
    """
    script = dirs.source / BUILD_SCRIPT
    if not script.is_file():
        raise BuildError(f"{dirs.name} has no {BUILD_SCRIPT} in {dirs.source}")
    runcmd(
        [f"./{BUILD_SCRIPT}", config.build_kind],
        runner=runner,
        cwd=dirs.source,
        env=env,
    )


def remove_bundled_thirdparty(dirs: Dirs) -> None:
    """
    Remove mupdf's vendored libraries so the sibling checkouts are used.

    Only a pristine vendored tree, recognised by its ``README``, is cleared.
    Top level git metadata files are dropped as well.
    """
    bundled = dirs.source / "thirdparty"
    if (bundled / "README").exists():
        log.info("Removing bundled libraries from %s", bundled)
        for entry in bundled.iterdir():
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
    for entry in dirs.source.glob(".git*"):
        if entry.is_file():
            log.debug("Removing %s", entry)
            entry.unlink()


def build_mupdf(
    env: MutableMapping[str, str],
    dirs: Dirs,
    config: BuildConfig,
    runner: ProcessRunner,
) -> None:
    """
    Build mupdf's objects for the target.

    :param env: The environment dictionary
    :type env: dict
    :param dirs: The working directories
    :type dirs: ``kobuild.build.common.Dirs``
    :param config: The settings of this run
    :type config: ``kobuild.common.BuildConfig``
    :param runner: Runs the build commands
    :type runner: ``kobuild.common.ProcessRunner``
    """
    if config.use_system_libs:
        remove_bundled_thirdparty(dirs)
    runcmd(
        ["make", "verbose=yes", "generate"],
        runner=runner,
        cwd=dirs.source,
        env=env,
    )
    runcmd(
        [
            "make",
            "verbose=yes",
            f"USE_SYSTEM_LIBS={yes_no(config.use_system_libs)}",
            f"OS={config.platform}",
            config.build_kind,
        ],
        runner=runner,
        cwd=dirs.source,
        env=env,
    )
