# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Build process common methods.

Re-exports the public API of the build submodules.
"""
from __future__ import annotations

from .builders import (
    build_default,
    build_mupdf,
    remove_bundled_thirdparty,
)

from .patch import (
    PATCH_ALREADY_APPLIED,
    PATCH_APPLIED,
    PATCH_MISSING,
    apply_patch,
    find_patch,
)

from .link import (
    Exclusion,
    ExclusionSet,
    LinkLibrary,
    LinkSpec,
    collect_objects,
    link,
    output_dir,
)

from .builder import (
    BuildReport,
    Builder,
    Dirs,
    Package,
    builds,
)


__all__ = [
    # Builder classes and instances
    "BuildReport",
    "Builder",
    "Dirs",
    "Package",
    "builds",
    # Patch functions
    "PATCH_ALREADY_APPLIED",
    "PATCH_APPLIED",
    "PATCH_MISSING",
    "apply_patch",
    "find_patch",
    # Link step
    "Exclusion",
    "ExclusionSet",
    "LinkLibrary",
    "LinkSpec",
    "collect_objects",
    "link",
    "output_dir",
    # Builders (specific build functions)
    "build_default",
    "build_mupdf",
    "remove_bundled_thirdparty",
]
