# Copyright 2022-2026 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Builder and Builds classes for managing the build process.
"""
from __future__ import annotations

import io
import logging
import os
import pathlib
import shutil
import sys
from typing import (
    Any,
    Callable,
    Dict,
    List,
    MutableMapping,
    NamedTuple,
    Optional,
    Sequence,
    Tuple,
    cast,
)

from kobuild.common import (
    PATCH_NAME,
    TRIPLET,
    BuildConfig,
    BuildError,
    BuildFailure,
    CommandError,
    CommandTimeout,
    ConfigurationError,
    DeadlineRunner,
    KobuildException,
    PathLike,
    ProcessRunner,
    WorkDirs,
    toolchain_tool,
    work_dirs,
)

from .builders import build_default as _default_build_func
from .builders import yes_no
from .link import ExclusionSet, LinkSpec, link, output_dir
from .patch import apply_patch, find_patch
from .ui import FAILED, PENDING, RUNNING, SUCCESS, print_ui

BuildFunc = Callable[
    [MutableMapping[str, str], "Dirs", BuildConfig, ProcessRunner], None
]
PopulateEnv = Callable[[MutableMapping[str, str], "Dirs", BuildConfig], None]

log = logging.getLogger(__name__)


def _default_populate_env(
    env: MutableMapping[str, str], dirs: "Dirs", config: BuildConfig
) -> None:
    """Default populate_env implementation (does nothing).

    Platform modules provide their own implementation via the
    ``populate_env`` hook.
    """
    _ = env
    _ = dirs
    _ = config


class Dirs:
    """
    A container for directories during build time.

    :param dirs: A collection of working directories
    :type dirs: ``kobuild.common.WorkDirs``
    :param name: The name of the package being built
    :type name: str
    :param build_kind: The build kind of this run
    :type build_kind: str
    """

    def __init__(self, dirs: WorkDirs, name: str, build_kind: str) -> None:
        self.name = name
        self.build_kind = build_kind
        self.root = dirs.root
        self.logs = dirs.logs
        self.source = dirs.package(name)

    @property
    def output(self) -> pathlib.Path:
        """The package's build kind output directory."""
        return output_dir(self.source, self.build_kind)

    def to_dict(self) -> Dict[str, Any]:
        """
        Get a dictionary representation of the directories in this collection.

        :return: A dictionary of all the directories
        :rtype: dict
        """
        return {x: getattr(self, x) for x in ["root", "source", "output", "logs"]}


class Package:
    """
    A third-party checkout built as one step of the sequence.

    :param name: The package name, also its directory below the root
    :type name: str
    :param build_func: The function that builds this package, defaults to ``build_default``
    :type build_func: types.FunctionType, optional
    :param patch: The name of the package's patch file
    :type patch: str
    """

    def __init__(
        self,
        name: str,
        build_func: Optional[BuildFunc] = None,
        patch: str = PATCH_NAME,
    ) -> None:
        self.name = name
        self.build_func: BuildFunc = (
            build_func if build_func is not None else _default_build_func
        )
        self.patch = patch

    def directory(self, root: PathLike) -> pathlib.Path:
        return pathlib.Path(root) / self.name

    def __repr__(self) -> str:
        return f"Package({self.name!r})"


class BuildReport(NamedTuple):
    """The outcome of a successful run."""

    config: BuildConfig
    packages: List[Tuple[str, str]]
    artifact: Optional[pathlib.Path] = None


class Builder:
    """
    Utility that handles the build process.

    :param root: The directory holding the sibling package checkouts
    :type root: str
    :param populate_env: The function to populate the build environment, defaults to ``populate_env``
    :type populate_env: types.FunctionType
    :param link_spec: The libraries linked into the artifact
    :type link_spec: ``kobuild.build.common.LinkSpec``
    :param exclusions: Objects left out of the artifact
    :type exclusions: ``kobuild.build.common.ExclusionSet``
    :param link_target: The package whose objects become the artifact
    :type link_target: str
    :param runner: Runs every external command, defaults to ``ProcessRunner``
    :type runner: ``kobuild.common.ProcessRunner``
    """

    def __init__(
        self,
        root: Optional[PathLike] = None,
        populate_env: Optional[PopulateEnv] = None,
        link_spec: Optional[LinkSpec] = None,
        exclusions: Optional[ExclusionSet] = None,
        link_target: Optional[str] = None,
        runner: Optional[ProcessRunner] = None,
        triplet: str = TRIPLET,
    ) -> None:
        self.packages: Dict[str, Package] = {}
        self.populate_env: PopulateEnv = (
            populate_env if populate_env is not None else _default_populate_env
        )
        self.link_spec = link_spec
        self.exclusions = exclusions if exclusions is not None else ExclusionSet()
        self.link_target = link_target
        self.runner: ProcessRunner = runner if runner is not None else ProcessRunner()
        self.triplet = triplet
        self.strict_patches = False
        self.set_root(root)

    def set_root(self, root: Optional[PathLike]) -> None:
        """
        Set the directory holding the package checkouts.

        :param root: The root, defaults to ``KOBUILD_ROOT`` or the current directory
        :type root: str
        """
        self.dirs: WorkDirs = work_dirs(root)

    @property
    def root(self) -> pathlib.Path:
        return self.dirs.root

    @property
    def linker(self) -> str:
        return toolchain_tool("gcc", self.triplet)

    def add(
        self,
        name: str,
        build_func: Optional[BuildFunc] = None,
        patch: str = PATCH_NAME,
    ) -> Package:
        """
        Append a package to the build sequence.

        Packages build in the order they are added, so a package must be
        added after everything it depends on.

        :param name: The name of the package
        :type name: str
        :param build_func: The function that builds this package, defaults to None
        :type build_func: types.FunctionType, optional
        :param patch: The package's patch file name
        :type patch: str
        """
        if name in self.packages:
            raise ConfigurationError(f"Package {name} is already in the sequence")
        package = Package(name, build_func, patch)
        self.packages[name] = package
        return package

    def sequence(self, steps: Optional[Sequence[str]] = None) -> List[Package]:
        """
        Return the packages to build, in the order they will be built.

        :param steps: A subset of package names to build in the given order,
            defaults to every package
        :type steps: list, optional

        :raises ConfigurationError: If a requested package is unknown
        """
        if steps is None:
            return list(self.packages.values())
        unknown = [_ for _ in steps if _ not in self.packages]
        if unknown:
            raise ConfigurationError(
                "Unknown package(s): {}. Known packages are: {}".format(
                    ", ".join(unknown), ", ".join(self.packages)
                )
            )
        return [self.packages[_] for _ in steps]

    def environment(self, dirs: Dirs, config: BuildConfig) -> Dict[str, str]:
        """
        Create the environment a package's build runs with.
        """
        env = {
            "PATH": os.environ.get("PATH", os.defpath),
        }
        if "HOME" in os.environ:
            env["HOME"] = os.environ["HOME"]
        env["OS"] = config.platform
        env["USE_SYSTEM_LIBS"] = yes_no(config.use_system_libs)
        env["BUILD_KIND"] = config.build_kind
        env["KOBUILD_ROOT"] = str(dirs.root)
        self.populate_env(env, dirs, config)
        return env

    def run(self, package: Package, config: BuildConfig) -> str:
        """
        Patch and build one package.

        :param package: The package to build
        :type package: ``Package``
        :param config: The settings of this run
        :type config: ``kobuild.common.BuildConfig``

        :raises PatchError: If the package's patch can not be applied
        :raises BuildError: If the package's build procedure fails

        :return: The outcome of the patch step
        :rtype: str
        """
        root_log = logging.getLogger(None)
        dirs = Dirs(self.dirs, package.name, config.build_kind)
        os.makedirs(dirs.logs, exist_ok=True)
        handler = logging.FileHandler(dirs.logs / f"{package.name}.log", mode="w")
        handler.setFormatter(
            logging.Formatter(f"%(asctime)s {package.name} %(message)s")
        )
        root_log.addHandler(handler)

        runner = self.runner
        if config.timeout is not None:
            runner = cast(ProcessRunner, DeadlineRunner(runner, config.timeout))
        try:
            if not dirs.source.is_dir():
                raise BuildError(f"Package directory {dirs.source} does not exist")
            env = self.environment(dirs, config)
            _ = dirs.to_dict()
            for k in _:
                log.info("Directory %s %s", k, _[k])
            for k in env:
                log.info("Environment %s %s", k, env[k])
            patched = apply_patch(
                dirs.source, runner, name=package.patch, strict=self.strict_patches
            )
            try:
                package.build_func(env, dirs, config, runner)
            except CommandTimeout:
                raise
            except CommandError as exc:
                raise BuildError(f"Build of {package.name} failed: {exc}") from exc
            except KobuildException:
                raise
            except Exception as exc:
                raise BuildError(
                    f"Build of {package.name} failed: {exc.__class__.__name__}: {exc}"
                ) from exc
            return patched
        except KobuildException:
            log.exception("Build failure")
            raise
        finally:
            root_log.removeHandler(handler)
            handler.close()

    def build(
        self,
        steps: Optional[Sequence[str]] = None,
        config: Optional[BuildConfig] = None,
        link: bool = True,
        show_ui: bool = False,
    ) -> BuildReport:
        """
        Build!

        Packages are built one at a time in sequence order. The first failure
        stops the run, packages built before it are left in place.

        :param steps: The packages to build, defaults to None
        :type steps: list, optional
        :param config: The settings of this run, defaults to a release build
        :type config: ``kobuild.common.BuildConfig``, optional
        :param link: Link the artifact when the link target was built, defaults to True
        :type link: bool, optional

        :raises BuildFailure: If a package fails to patch or build
        :raises LinkError: If the artifact can not be linked
        """  # noqa: D400
        if config is None:
            config = BuildConfig()
        packages = self.sequence(steps)
        states = {_.name: PENDING for _ in packages}
        results: List[Tuple[str, str]] = []
        log.info("Starting builds")
        for package in packages:
            log.info("Building %s.", package.name)
            states[package.name] = RUNNING
            if show_ui:
                print_ui(states)
            try:
                patched = self.run(package, config)
            except KobuildException as exc:
                states[package.name] = FAILED
                if show_ui:
                    print_ui(states)
                    sys.stdout.write("\n")
                log.error("Build step %s has failed", package.name)
                raise BuildFailure(package.name, exc) from exc
            states[package.name] = SUCCESS
            results.append((package.name, patched))
        if show_ui:
            print_ui(states)
            sys.stdout.write("\n")
            sys.stdout.flush()

        artifact = None
        if link and self.link_target in states:
            artifact = self.link(config)
        return BuildReport(config, results, artifact)

    def link(self, config: Optional[BuildConfig] = None) -> pathlib.Path:
        """
        Link the link target's objects into the artifact.

        :param config: The settings of this run, defaults to a release build
        :type config: ``kobuild.common.BuildConfig``, optional

        :raises LinkError: If the artifact can not be linked

        :return: The path of the artifact
        :rtype: ``pathlib.Path``
        """
        if config is None:
            config = BuildConfig()
        if self.link_target is None or self.link_spec is None:
            raise ConfigurationError("This build has nothing to link")
        return link(
            self.dirs.package(self.link_target),
            self.root,
            config,
            self.link_spec,
            self.exclusions,
            self.runner,
            self.linker,
        )

    def artifact(self, build_kind: str) -> Optional[pathlib.Path]:
        """
        Return where the artifact of ``build_kind`` is written.
        """
        if self.link_target is None or self.link_spec is None:
            return None
        source = self.dirs.package(self.link_target)
        return output_dir(source, build_kind) / self.link_spec.soname

    def check_prereqs(self, steps: Optional[Sequence[str]] = None) -> List[str]:
        """
        Look for the cross compiler, the host tools and the package checkouts.

        :param steps: The packages that will be built, defaults to all of them
        :type steps: list, optional

        :return: One message per missing prerequisite, empty when the build can start
        :rtype: list
        """
        fail: List[str] = []
        linker = self.linker
        if shutil.which(linker) is None:
            fail.append(
                f"Cross compiler {linker} not found. Put it on PATH or set KOBUILD_TOOLCHAIN."
            )
        for tool in ("make", "patch"):
            if shutil.which(tool) is None:
                fail.append(f"Required tool {tool} not found on PATH.")
        try:
            packages = self.sequence(steps)
        except ConfigurationError as exc:
            return fail + [str(exc)]
        for package in packages:
            directory = package.directory(self.root)
            if not directory.is_dir():
                fail.append(f"Package {package.name} not found at {directory}.")
        return fail

    def describe(self) -> List[Tuple[int, Package, bool]]:
        """
        List each package with its position and whether it carries a patch.
        """
        return [
            (
                ordinal,
                package,
                find_patch(package.directory(self.root), package.patch) is not None,
            )
            for ordinal, package in enumerate(self.packages.values(), 1)
        ]

    def __call__(
        self,
        steps: Optional[Sequence[str]] = None,
        config: Optional[BuildConfig] = None,
        link: bool = True,
        show_ui: bool = False,
        log_level: str = "WARNING",
    ) -> BuildReport:
        """
        Check prerequisites, set up logging and build.

        :param steps: The packages to build, defaults to None
        :type steps: list, optional
        :param config: The settings of this run, defaults to a release build
        :type config: ``kobuild.common.BuildConfig``, optional
        :param link: Link the artifact when the link target was built, defaults to True
        :type link: bool, optional
        :param show_ui: Display a status line instead of streaming the log
        :type show_ui: bool, optional
        :param log_level: The level of messages written to stderr
        :type log_level: str, optional
        """
        log = logging.getLogger(None)
        log.setLevel(logging.NOTSET)

        stream_handler: Optional[logging.Handler] = None
        if not show_ui:
            stream_handler = logging.StreamHandler()
            stream_handler.setLevel(logging.getLevelName(log_level))
            log.addHandler(stream_handler)

        os.makedirs(self.dirs.logs, exist_ok=True)
        file_handler = logging.FileHandler(self.dirs.logs / "build.log")
        file_handler.setLevel(logging.INFO)
        log.addHandler(file_handler)

        try:
            failures = self.check_prereqs(steps)
            if failures:
                raise ConfigurationError("\n".join(failures))
            return self.build(steps, config, link=link, show_ui=show_ui)
        finally:
            log.removeHandler(file_handler)
            file_handler.close()
            if stream_handler is not None:
                log.removeHandler(stream_handler)

    def log_tail(self, name: str, size: int = 4096) -> str:
        """
        Return the end of a package's log file.
        """
        log_file = self.dirs.logs / f"{name}.log"
        try:
            with io.open(log_file) as fp:
                fp.seek(0, 2)
                end = fp.tell()
                ind = end - size
                if ind > 0:
                    fp.seek(ind)
                else:
                    fp.seek(0)
                return fp.read()
        except FileNotFoundError:
            return f"Log file not found: {log_file}"


class Builds:
    """Collection of platform-specific builders."""

    def __init__(self) -> None:
        """Initialize an empty collection of builders."""
        self.builds: Dict[str, Builder] = {}

    def add(self, platform: str, *args: Any, **kwargs: Any) -> Builder:
        """Create and register the builder for a specific platform."""
        build = Builder(*args, **kwargs)
        self.builds[platform] = build
        return build


builds = Builds()
