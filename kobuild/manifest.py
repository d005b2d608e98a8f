# Copyright 2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
#
"""
Kobuild link manifest.
"""
from __future__ import annotations

import hashlib
import json
import logging
import pathlib
import time
from typing import TYPE_CHECKING, Any, Dict, Sequence

from kobuild.common import BuildConfig, PathLike, __version__

if TYPE_CHECKING:
    from kobuild.build.common.link import LinkSpec

log = logging.getLogger(__name__)

MANIFEST_SUFFIX = ".manifest.json"


def file_digest(path: PathLike) -> str:
    """
    Return the sha256 of a file.
    """
    hsh = hashlib.sha256()
    with open(path, "rb") as fp:
        while True:
            chunk = fp.read(9062)
            if not chunk:
                break
            hsh.update(chunk)
    return hsh.hexdigest()


def manifest_path(artifact: PathLike) -> pathlib.Path:
    artifact = pathlib.Path(artifact)
    return artifact.with_name(artifact.name + MANIFEST_SUFFIX)


def write_manifest(
    artifact: PathLike,
    config: BuildConfig,
    spec: LinkSpec,
    objects: Sequence[PathLike],
    excluded: Sequence[PathLike],
    library_args: Sequence[str],
) -> pathlib.Path:
    """
    Record what went into a linked artifact next to it.

    Object paths are stored relative to the linked package so two builds of
    the same tree produce comparable manifests.

    :return: The path of the manifest
    :rtype: ``pathlib.Path``
    """
    artifact = pathlib.Path(artifact)
    data: Dict[str, Any] = {
        "kobuild": __version__,
        "created": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "build_kind": config.build_kind,
        "platform": config.platform,
        "triplet": config.triplet,
        "soname": spec.soname,
        "artifact": artifact.name,
        "sha256": file_digest(artifact),
        "objects": [pathlib.Path(_).as_posix() for _ in objects],
        "excluded": [pathlib.Path(_).as_posix() for _ in excluded],
        "libraries": [
            {
                "name": _.name,
                "package": _.package,
                "subpath": _.subpath,
            }
            for _ in spec.libraries
        ],
        "link_args": list(library_args),
    }
    path = manifest_path(artifact)
    with open(path, "w") as fp:
        json.dump(data, fp, indent=2)
        fp.write("\n")
    log.info("Wrote link manifest %s", path)
    return path


def read_manifest(artifact: PathLike) -> Dict[str, Any]:
    """
    Load the manifest written for ``artifact``.
    """
    with open(manifest_path(artifact)) as fp:
        return json.load(fp)
