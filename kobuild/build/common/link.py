# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Link the renderer's object files into the final shared library.
"""
from __future__ import annotations

import logging
import pathlib
import re
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple

from kobuild.common import (
    BuildConfig,
    ConfigurationError,
    LinkError,
    MissingSearchPath,
    PathLike,
    ProcessRunner,
)
from kobuild.manifest import write_manifest

log = logging.getLogger(__name__)

EXACT = "exact"
SUBSTRING = "substring"
REGEX = "regex"

KINDS = (EXACT, SUBSTRING, REGEX)

OBJECT_SUFFIX = ".o"


class Exclusion:
    """
    A filename predicate used to drop object files from the link.

    :param pattern: The name, substring or regular expression to match
    :type pattern: str
    :param kind: How ``pattern`` is matched, one of ``exact``, ``substring`` or ``regex``
    :type kind: str
    """

    def __init__(self, pattern: str, kind: str = REGEX) -> None:
        if kind not in KINDS:
            raise ConfigurationError(f"Unknown exclusion kind {kind!r}")
        self.pattern = pattern
        self.kind = kind
        self._regex: Optional[Pattern[str]] = None
        if kind == REGEX:
            self._regex = re.compile(pattern)

    @classmethod
    def exact(cls, name: str) -> "Exclusion":
        return cls(name, EXACT)

    @classmethod
    def substring(cls, text: str) -> "Exclusion":
        return cls(text, SUBSTRING)

    @classmethod
    def regex(cls, pattern: str) -> "Exclusion":
        return cls(pattern, REGEX)

    def matches(self, filename: str) -> bool:
        """
        Check a file name, never its directory, against this predicate.
        """
        if self.kind == EXACT:
            return filename == self.pattern
        if self.kind == SUBSTRING:
            return self.pattern in filename
        assert self._regex is not None
        return self._regex.search(filename) is not None

    def __repr__(self) -> str:
        return f"Exclusion({self.pattern!r}, {self.kind!r})"


class ExclusionSet:
    """
    The denylist of object files that must not reach the linker.

    :param exclusions: The predicates, any match excludes a file
    :type exclusions: list
    """

    def __init__(self, exclusions: Iterable[Exclusion] = ()) -> None:
        self.exclusions = list(exclusions)

    @classmethod
    def from_patterns(
        cls, patterns: Iterable[str], kind: str = SUBSTRING
    ) -> "ExclusionSet":
        return cls(Exclusion(_, kind) for _ in patterns)

    def match(self, filename: str) -> Optional[Exclusion]:
        for exclusion in self.exclusions:
            if exclusion.matches(filename):
                return exclusion
        return None

    def split(
        self, paths: Iterable[PathLike]
    ) -> Tuple[List[pathlib.Path], List[pathlib.Path]]:
        """
        Separate paths into the kept and the excluded ones, keeping their order.
        """
        kept: List[pathlib.Path] = []
        excluded: List[pathlib.Path] = []
        for path in map(pathlib.Path, paths):
            exclusion = self.match(path.name)
            if exclusion is None:
                kept.append(path)
            else:
                log.debug("Excluding %s (%r)", path, exclusion)
                excluded.append(path)
        return kept, excluded

    def filter(self, paths: Iterable[PathLike]) -> List[pathlib.Path]:
        return self.split(paths)[0]

    def __len__(self) -> int:
        return len(self.exclusions)


class LinkLibrary:
    """
    A library passed to the linker.

    :param name: The library name given to ``-l``
    :type name: str
    :param package: The sibling package whose build output holds the library,
        None for toolchain libraries
    :type package: str
    :param subpath: The library directory inside the sibling package
    :type subpath: str
    """

    def __init__(
        self, name: str, package: Optional[str] = None, subpath: str = ""
    ) -> None:
        self.name = name
        self.package = package
        self.subpath = subpath

    def search_path(self, root: PathLike) -> Optional[pathlib.Path]:
        if self.package is None:
            return None
        path = pathlib.Path(root) / self.package
        if self.subpath:
            path = path / self.subpath
        return path

    def __repr__(self) -> str:
        return f"LinkLibrary({self.name!r}, {self.package!r}, {self.subpath!r})"


class LinkSpec:
    """
    The libraries and flags used to produce the shared library.

    :param libraries: The libraries, in the order they are given to the linker
    :type libraries: list
    :param soname: The shared object name, also the output file name
    :type soname: str
    """

    def __init__(self, libraries: Sequence[LinkLibrary], soname: str) -> None:
        self.libraries = list(libraries)
        self.soname = soname

    def resolve(self, root: PathLike) -> List[str]:
        """
        Return the library arguments for the linker.

        :param root: The directory holding the sibling packages
        :type root: str

        :raises MissingSearchPath: If a sibling library directory does not exist

        :return: The ``-L`` and ``-l`` arguments
        :rtype: list
        """
        args: List[str] = []
        for library in self.libraries:
            path = library.search_path(root)
            if path is not None:
                if not path.is_dir():
                    raise MissingSearchPath(library.package or library.name, path)
                args.append(f"-L{path}")
            args.append(f"-l{library.name}")
        return args

    def command(
        self,
        linker: str,
        objects: Sequence[PathLike],
        library_args: Sequence[str],
        output: PathLike,
    ) -> List[str]:
        return [
            linker,
            "-Wl,--gc-sections",
            "-o",
            str(output),
            *map(str, objects),
            *library_args,
            "-shared",
            "-Wl,-soname",
            f"-Wl,{self.soname}",
            "-Wl,--no-undefined",
        ]


def output_dir(source: PathLike, build_kind: str) -> pathlib.Path:
    """
    Return the directory a package writes its ``build_kind`` objects to.
    """
    return pathlib.Path(source) / "build" / build_kind


def collect_objects(build_dir: PathLike) -> List[pathlib.Path]:
    """
    Find every object file below ``build_dir``.

    :param build_dir: The build kind output directory
    :type build_dir: str

    :raises LinkError: If ``build_dir`` does not exist

    :return: The object files sorted by their path relative to ``build_dir``
    :rtype: list
    """
    build_dir = pathlib.Path(build_dir)
    if not build_dir.is_dir():
        raise LinkError(f"Build output {build_dir} does not exist, was it built?")
    objects = [_ for _ in build_dir.rglob(f"*{OBJECT_SUFFIX}") if _.is_file()]
    return sorted(objects, key=lambda _: _.relative_to(build_dir).as_posix())


def link(
    source: PathLike,
    root: PathLike,
    config: BuildConfig,
    spec: LinkSpec,
    exclusions: ExclusionSet,
    runner: ProcessRunner,
    linker: str,
) -> pathlib.Path:
    """
    Link the filtered objects of ``source`` into ``build/<kind>/<soname>``.

    :param source: The checkout of the package whose objects are linked
    :type source: str
    :param root: The directory holding the sibling packages
    :type root: str
    :param config: The settings of this run
    :type config: ``kobuild.common.BuildConfig``
    :param spec: The libraries and soname
    :type spec: ``LinkSpec``
    :param exclusions: Objects left out of the link
    :type exclusions: ``ExclusionSet``
    :param runner: Runs the linker
    :type runner: ``kobuild.common.ProcessRunner``
    :param linker: The compiler driver used to link
    :type linker: str

    :raises LinkError: On missing objects, search paths or linker failures

    :return: The path of the shared library
    :rtype: ``pathlib.Path``
    """
    source = pathlib.Path(source)
    build_dir = output_dir(source, config.build_kind)
    objects = collect_objects(build_dir)
    kept, excluded = exclusions.split(objects)
    if not kept:
        raise LinkError(
            f"No object files to link in {build_dir} "
            f"({len(objects)} found, {len(excluded)} excluded)"
        )
    library_args = spec.resolve(root)

    artifact = build_dir / spec.soname
    relative = [_.relative_to(source) for _ in kept]
    cmd = spec.command(linker, relative, library_args, artifact.relative_to(source))
    log.info(
        "Linking %s from %d objects (%d excluded)", artifact, len(kept), len(excluded)
    )
    result = runner(cmd, cwd=source, timeout=config.timeout)
    if not result.ok:
        raise LinkError(
            f"Linking {spec.soname} failed with exit code {result.returncode}:\n"
            f"{result.output}"
        )
    if not artifact.is_file():
        raise LinkError(f"The linker did not produce {artifact}")

    write_manifest(
        artifact,
        config,
        spec,
        objects=relative,
        excluded=[_.relative_to(source) for _ in excluded],
        library_args=library_args,
    )
    return artifact
