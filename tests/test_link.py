# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

import pathlib

import pytest

from kobuild.build.common import (
    Exclusion,
    ExclusionSet,
    LinkLibrary,
    LinkSpec,
    collect_objects,
    link,
)
from kobuild.common import (
    BuildConfig,
    CommandResult,
    ConfigurationError,
    LinkError,
    MissingSearchPath,
)
from kobuild.manifest import read_manifest
from tests.helpers import FakeRunner, fake_linker, is_link

LINKER = "arm-linux-gnueabihf-gcc"


def test_exclusion_kinds() -> None:
    assert Exclusion.exact("a.o").matches("a.o")
    assert not Exclusion.exact("a.o").matches("aa.o")
    assert Exclusion.substring("Font").matches("FontDataTable.o")
    assert not Exclusion.substring("font").matches("FontDataTable.o")
    assert Exclusion.regex(r"^color-lcms").matches("color-lcms2.o")
    assert not Exclusion.regex(r"^color-lcms").matches("my-color-lcms.o")


def test_exclusion_unknown_kind() -> None:
    with pytest.raises(ConfigurationError):
        Exclusion("x", "glob")


def test_exclusion_set_filter() -> None:
    exclusions = ExclusionSet.from_patterns(["FontData", "ColorProfile"])
    objects = ["a.o", "FontDataTable.o", "b.o", "ColorProfileLCMS.o"]
    assert exclusions.filter(objects) == [pathlib.Path("a.o"), pathlib.Path("b.o")]


def test_exclusion_matches_file_name_only() -> None:
    exclusions = ExclusionSet.from_patterns(["FontData"])
    kept, excluded = exclusions.split(
        ["build/FontData/a.o", "build/fonts/FontData.o"]
    )
    assert kept == [pathlib.Path("build/FontData/a.o")]
    assert excluded == [pathlib.Path("build/fonts/FontData.o")]


def test_empty_exclusion_set_keeps_everything() -> None:
    assert ExclusionSet().filter(["a.o", "b.o"]) == [
        pathlib.Path("a.o"),
        pathlib.Path("b.o"),
    ]


def test_collect_objects_is_sorted(tree) -> None:
    tree.add_objects("mupdf", "release", "pdf/z.o", "fitz/b.o", "fitz/a.o", "a.o")
    tree.add_file("notes.txt", "", "mupdf", "build", "release")
    tree.add_file("c.c", "", "mupdf", "build", "release", "fitz")
    build_dir = tree.root / "mupdf" / "build" / "release"
    objects = collect_objects(build_dir)
    assert [_.relative_to(build_dir).as_posix() for _ in objects] == [
        "a.o",
        "fitz/a.o",
        "fitz/b.o",
        "pdf/z.o",
    ]
    assert collect_objects(build_dir) == objects


def test_collect_objects_missing_build(tree) -> None:
    tree.add_package("mupdf")
    with pytest.raises(LinkError, match="does not exist"):
        collect_objects(tree.root / "mupdf" / "build" / "release")


def test_link_spec_resolve(tree, small_spec) -> None:
    tree.add_lib_dir("zlib")
    tree.add_lib_dir("libjpeg", ".libs")
    assert small_spec.resolve(tree.root) == [
        "-lm",
        f"-L{tree.root / 'libjpeg' / '.libs'}",
        "-ljpeg",
        f"-L{tree.root / 'zlib'}",
        "-lz",
    ]


def test_link_spec_missing_search_path(tree) -> None:
    tree.add_lib_dir("freetype2", "objs/.libs")
    spec = LinkSpec(
        [
            LinkLibrary("freetype", "freetype2", "objs/.libs"),
            LinkLibrary("harfbuzz", "harfbuzz", "src/.libs"),
        ],
        soname="libmupdf.so",
    )
    with pytest.raises(MissingSearchPath) as excinfo:
        spec.resolve(tree.root)
    assert excinfo.value.package == "harfbuzz"
    assert "harfbuzz" in str(excinfo.value)


def test_link_spec_command(small_spec) -> None:
    cmd = small_spec.command(LINKER, ["a.o", "b.o"], ["-lz"], "build/release/libmupdf.so")
    assert cmd == [
        LINKER,
        "-Wl,--gc-sections",
        "-o",
        "build/release/libmupdf.so",
        "a.o",
        "b.o",
        "-lz",
        "-shared",
        "-Wl,-soname",
        "-Wl,libmupdf.so",
        "-Wl,--no-undefined",
    ]


@pytest.fixture
def linkable(tree):
    tree.add_lib_dir("zlib")
    tree.add_lib_dir("libjpeg", ".libs")
    tree.add_objects(
        "mupdf",
        "release",
        "fitz/a.o",
        "fitz/FontDataTable.o",
        "pdf/b.o",
        "fitz/ColorProfileLCMS.o",
    )
    return tree.root / "mupdf"


EXCLUSIONS = ExclusionSet.from_patterns(["FontData", "ColorProfile"])


def test_link(tree, linkable, small_spec) -> None:
    runner = FakeRunner(fake_linker)
    artifact = link(
        linkable, tree.root, BuildConfig(), small_spec, EXCLUSIONS, runner, LINKER
    )
    assert artifact == linkable / "build" / "release" / "libmupdf.so"
    assert artifact.exists()
    (call,) = runner.calls
    assert call.cwd == linkable
    assert [_ for _ in call.cmd if _.endswith(".o")] == [
        "build/release/fitz/a.o",
        "build/release/pdf/b.o",
    ]
    assert "-Wl,--no-undefined" in call.cmd
    manifest = read_manifest(artifact)
    assert manifest["soname"] == "libmupdf.so"
    assert manifest["objects"] == ["build/release/fitz/a.o", "build/release/pdf/b.o"]
    assert manifest["excluded"] == [
        "build/release/fitz/ColorProfileLCMS.o",
        "build/release/fitz/FontDataTable.o",
    ]
    assert [_["name"] for _ in manifest["libraries"]] == ["m", "jpeg", "z"]


def test_link_is_deterministic(tree, linkable, small_spec) -> None:
    runner = FakeRunner(fake_linker)
    for _ in range(2):
        link(linkable, tree.root, BuildConfig(), small_spec, EXCLUSIONS, runner, LINKER)
    first, second = runner.commands
    assert first == second


def test_link_missing_search_path_before_linking(tree, linkable) -> None:
    spec = LinkSpec([LinkLibrary("harfbuzz", "harfbuzz", "src/.libs")], "libmupdf.so")
    runner = FakeRunner(fake_linker)
    with pytest.raises(MissingSearchPath, match="harfbuzz"):
        link(linkable, tree.root, BuildConfig(), spec, EXCLUSIONS, runner, LINKER)
    assert runner.calls == []


def test_link_everything_excluded(tree, small_spec) -> None:
    tree.add_objects("mupdf", "release", "FontDataTable.o")
    runner = FakeRunner(fake_linker)
    with pytest.raises(LinkError, match="No object files"):
        link(
            tree.root / "mupdf",
            tree.root,
            BuildConfig(),
            small_spec,
            EXCLUSIONS,
            runner,
            LINKER,
        )
    assert runner.calls == []


def test_link_not_built(tree, small_spec) -> None:
    tree.add_package("mupdf")
    with pytest.raises(LinkError):
        link(
            tree.root / "mupdf",
            tree.root,
            BuildConfig(),
            small_spec,
            EXCLUSIONS,
            FakeRunner(),
            LINKER,
        )


def test_link_other_build_kind(tree, linkable, small_spec) -> None:
    with pytest.raises(LinkError, match="debug"):
        link(
            linkable,
            tree.root,
            BuildConfig(build_kind="debug"),
            small_spec,
            EXCLUSIONS,
            FakeRunner(fake_linker),
            LINKER,
        )


def test_link_failure_passes_diagnostics(tree, linkable, small_spec) -> None:
    runner = FakeRunner(lambda call: CommandResult(1, "undefined reference to `jpeg_read'"))
    with pytest.raises(LinkError, match="jpeg_read"):
        link(linkable, tree.root, BuildConfig(), small_spec, EXCLUSIONS, runner, LINKER)
    assert is_link(runner.calls[0])


def test_link_without_output(tree, linkable, small_spec) -> None:
    with pytest.raises(LinkError, match="did not produce"):
        link(
            linkable,
            tree.root,
            BuildConfig(),
            small_spec,
            EXCLUSIONS,
            FakeRunner(),
            LINKER,
        )
