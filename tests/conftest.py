# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
#
import logging
from pathlib import Path
from typing import Iterator

import pytest

from kobuild.build.common import Builder, ExclusionSet, LinkLibrary, LinkSpec
from kobuild.common import LOGS_ENV, ROOT_ENV, TOOLCHAIN_ENV, TRIPLET
from tests.helpers import FakeRunner, ThirdpartyTree, make_tool

log = logging.getLogger(__name__)


@pytest.fixture(autouse=True)
def clean_environ(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (ROOT_ENV, TOOLCHAIN_ENV, LOGS_ENV):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def tree(tmp_path: Path) -> Iterator[ThirdpartyTree]:
    with ThirdpartyTree(tmp_path / "thirdparty") as tree:
        yield tree


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def toolchain(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """
    A fake cross toolchain plus make and patch, the only tools on PATH.
    """
    toolchain = tmp_path / "toolchain"
    make_tool(toolchain / "bin", f"{TRIPLET}-gcc")
    host = tmp_path / "host-bin"
    make_tool(host, "make")
    make_tool(host, "patch")
    monkeypatch.setenv(TOOLCHAIN_ENV, str(toolchain))
    monkeypatch.setenv("PATH", str(host))
    return toolchain


@pytest.fixture
def small_spec() -> LinkSpec:
    return LinkSpec(
        [LinkLibrary("m"), LinkLibrary("jpeg", "libjpeg", ".libs"), LinkLibrary("z", "zlib")],
        soname="libmupdf.so",
    )


@pytest.fixture
def builder(tree: ThirdpartyTree, runner: FakeRunner, small_spec: LinkSpec) -> Builder:
    """
    A three package chain ending in mupdf, ready to build and link.
    """
    build = Builder(
        root=tree.root,
        link_spec=small_spec,
        exclusions=ExclusionSet.from_patterns(["FontData", "ColorProfile"]),
        link_target="mupdf",
        runner=runner,
    )
    for name in ("zlib", "libjpeg", "mupdf"):
        tree.add_package(name)
        build.add(name)
    tree.add_lib_dir("zlib")
    tree.add_lib_dir("libjpeg", ".libs")
    for kind in ("release", "debug"):
        tree.add_objects("mupdf", kind, "fitz/a.o", "fitz/FontDataTable.o", "pdf/b.o")
    return build
