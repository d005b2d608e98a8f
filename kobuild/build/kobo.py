# Copyright 2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
The Kobo build process.
"""
from __future__ import annotations

from typing import MutableMapping

from .common import (
    Dirs,
    Exclusion,
    ExclusionSet,
    LinkLibrary,
    LinkSpec,
    build_mupdf,
    builds,
)
from ..common import KOBO, BuildConfig, get_toolchain

EnvMapping = MutableMapping[str, str]

SONAME = "libmupdf.so"

# Bundled font and color management data that a generic mupdf build always
# compiles in.
EXCLUSIONS = ExclusionSet(
    [
        Exclusion.regex("SourceHanSerif-Regular"),
        Exclusion.regex("DroidSansFallbackFull"),
        Exclusion.regex("NotoSerifTangut"),
        Exclusion.regex("color-lcms"),
    ]
)

LINK_SPEC = LinkSpec(
    [
        LinkLibrary("m"),
        LinkLibrary("freetype", "freetype2", "objs/.libs"),
        LinkLibrary("harfbuzz", "harfbuzz", "src/.libs"),
        LinkLibrary("jbig2dec", "jbig2dec", ".libs"),
        LinkLibrary("jpeg", "libjpeg", ".libs"),
        LinkLibrary("openjp2", "openjpeg", "build/bin"),
        LinkLibrary("z", "zlib"),
    ],
    soname=SONAME,
)


def populate_env(env: EnvMapping, dirs: Dirs, config: BuildConfig) -> None:
    """
    Point the package builds at the cross toolchain.

    :param env: The environment dictionary
    :type env: dict
    :param dirs: The working directories
    :type dirs: ``kobuild.build.common.Dirs``
    :param config: The settings of this run
    :type config: ``kobuild.common.BuildConfig``
    """
    toolchain = get_toolchain(config.triplet)
    prefix = f"{config.triplet}-"
    if toolchain is not None:
        # CC and CXX need to be to have the full path to the executable
        prefix = f"{toolchain}/bin/{config.triplet}-"
        env["PATH"] = f"{toolchain}/bin:{env['PATH']}"
    env["CHOST"] = config.triplet
    env["CROSS_TC"] = config.triplet
    env["CC"] = f"{prefix}gcc"
    env["CXX"] = f"{prefix}g++"
    env["AR"] = f"{prefix}ar"
    env["RANLIB"] = f"{prefix}ranlib"
    env["STRIP"] = f"{prefix}strip"


build = builds.add(
    KOBO,
    populate_env=populate_env,
    link_spec=LINK_SPEC,
    exclusions=EXCLUSIONS,
    link_target="mupdf",
)

# Dependencies first, the document renderer last.
build.add("zlib")
build.add("bzip2")
build.add("libpng")
build.add("libjpeg")
build.add("openjpeg")
build.add("jbig2dec")
build.add("freetype2")
build.add("harfbuzz")
build.add("djvulibre")
build.add("mupdf", build_func=build_mupdf)
