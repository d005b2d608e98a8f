# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
#
import pathlib
import shutil
from typing import Callable, Dict, List, NamedTuple, Optional

from kobuild.common import BUILD_SCRIPT, PATCH_NAME, CommandResult


class Call(NamedTuple):
    cmd: List[str]
    cwd: Optional[pathlib.Path]
    env: Optional[Dict[str, str]]
    timeout: Optional[float]


class FakeRunner:
    """
    Record commands instead of running them.

    ``handler`` receives every ``Call`` and may return a ``CommandResult``,
    returning None means the command succeeded.
    """

    def __init__(self, handler: Optional[Callable[[Call], Optional[CommandResult]]] = None):
        self.handler = handler
        self.calls: List[Call] = []

    def __call__(self, cmd, cwd=None, env=None, timeout=None):
        call = Call(
            [str(_) for _ in cmd],
            pathlib.Path(cwd) if cwd is not None else None,
            dict(env) if env is not None else None,
            timeout,
        )
        self.calls.append(call)
        if self.handler is not None:
            result = self.handler(call)
            if result is not None:
                return result
        return CommandResult(0, "")

    @property
    def commands(self):
        return [_.cmd for _ in self.calls]

    def calls_to(self, program):
        return [_ for _ in self.calls if _.cmd[0] == program]

    def built(self):
        """Package directory names whose build script ran, in order."""
        return [_.cwd.name for _ in self.calls_to(f"./{BUILD_SCRIPT}")]


def is_link(call):
    return call.cmd[0].endswith("gcc") and "-shared" in call.cmd


def fake_linker(call):
    """Write the requested output like a successful linker would."""
    if is_link(call):
        output = call.cwd / call.cmd[call.cmd.index("-o") + 1]
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(b"\x7fELF fake shared object")
    return None


def fail_when(predicate, output="boom"):
    """Build a handler failing every call matching ``predicate``."""

    def handler(call):
        if predicate(call):
            return CommandResult(2, output)
        return fake_linker(call)

    return handler


class ThirdpartyTree:
    """
    A directory of sibling package checkouts.
    """

    def __init__(self, root_dir):
        self.root = pathlib.Path(root_dir)

    def make_tree(self):
        self.root.mkdir(parents=True, exist_ok=True)

    def destroy_tree(self):
        # Make sure the tree is torn down properly
        if self.root.exists():
            shutil.rmtree(self.root, ignore_errors=True)

    def add_file(self, name, contents, *relpath, binary=False):
        file_path = (self.root / pathlib.Path(*relpath) / name).resolve()
        file_path.parent.mkdir(parents=True, exist_ok=True)
        if binary:
            file_path.write_bytes(contents)
        else:
            file_path.write_text(contents)
        return file_path

    def add_package(self, name, script=True, patch=None):
        package = self.root / name
        package.mkdir(parents=True, exist_ok=True)
        if script:
            build = self.add_file(BUILD_SCRIPT, "#!/bin/sh\nexit 0\n", name)
            build.chmod(0o755)
        if patch is not None:
            self.add_file(PATCH_NAME, patch, name)
        return package

    def add_objects(self, package, build_kind, *relpaths):
        return [
            self.add_file(
                pathlib.Path(relpath).name,
                b"\x7fELF",
                package,
                "build",
                build_kind,
                *pathlib.Path(relpath).parent.parts,
                binary=True,
            )
            for relpath in relpaths
        ]

    def add_lib_dir(self, package, subpath=""):
        path = self.root / package / subpath
        path.mkdir(parents=True, exist_ok=True)
        return path

    def __enter__(self):
        self.make_tree()
        return self

    def __exit__(self, *exc):
        self.destroy_tree()


def make_tool(bin_dir, name):
    """Create an executable stand-in for a host tool."""
    bin_dir = pathlib.Path(bin_dir)
    bin_dir.mkdir(parents=True, exist_ok=True)
    tool = bin_dir / name
    tool.write_text("#!/bin/sh\nexit 0\n")
    tool.chmod(0o755)
    return tool
