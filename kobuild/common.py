# Copyright 2022-2025 Broadcom.
# SPDX-License-Identifier: Apache-2.0
"""
Common classes and values used around kobuild.
"""
from __future__ import annotations

import logging
import os
import pathlib
import selectors
import shutil
import subprocess
import time
from typing import IO, Dict, List, Mapping, NamedTuple, Optional, Sequence, Union, cast

# kobuild package version
__version__ = "0.3.0"

log = logging.getLogger(__name__)

MODULE_DIR = pathlib.Path(__file__).resolve().parent

KOBO = "kobo"
TRIPLET = "arm-linux-gnueabihf"

DEFAULT_BUILD_KIND = "release"

# Per-package conventions shared by every third-party checkout.
PATCH_NAME = "kobo.patch"
BUILD_SCRIPT = "build-kobo.sh"

ROOT_ENV = "KOBUILD_ROOT"
TOOLCHAIN_ENV = "KOBUILD_TOOLCHAIN"
LOGS_ENV = "KOBUILD_LOGS"

PathLike = Union[str, os.PathLike[str]]


class KobuildException(Exception):
    """
    Base class for exeptions generated from kobuild.
    """


class ConfigurationError(KobuildException):
    """
    The requested build can not be described with the known packages or options.
    """


class PlatformError(KobuildException):
    """
    The host is missing something the target build needs.
    """


class CommandError(KobuildException):
    """
    An external command finished with a non zero exit code.
    """

    def __init__(self, message: str, result: Optional["CommandResult"] = None) -> None:
        super().__init__(message)
        self.result = result


class CommandTimeout(CommandError):
    """
    An external command ran past its wall clock budget and was killed.
    """


class PatchError(KobuildException):
    """
    A package patch is malformed, conflicts, or was already applied.
    """


class BuildError(KobuildException):
    """
    A package's own build procedure failed.
    """


class LinkError(KobuildException):
    """
    The final shared library could not be linked.
    """


class MissingSearchPath(LinkError):
    """
    A sibling package's library directory does not exist.
    """

    def __init__(self, package: str, path: PathLike) -> None:
        super().__init__(
            f"Library search path for {package} does not exist: {path} "
            f"(was {package} built?)"
        )
        self.package = package
        self.path = pathlib.Path(path)


class BuildFailure(KobuildException):
    """
    A package in the sequence failed, the rest of the sequence was not run.
    """

    def __init__(self, package: str, cause: BaseException) -> None:
        super().__init__(f"Package {package} failed: {cause}")
        self.package = package
        self.cause = cause


class CommandResult(NamedTuple):
    """The exit status and combined output of an external command."""

    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class BuildConfig(NamedTuple):
    """
    Settings shared by every step of one orchestration run.

    :param build_kind: The build variant, threaded through every package build
        and the artifact path
    :type build_kind: str
    :param platform: The platform identifier passed to package builds
    :type platform: str
    :param use_system_libs: Build against sibling libraries instead of bundled copies
    :type use_system_libs: bool
    :param triplet: The cross toolchain prefix
    :type triplet: str
    :param timeout: Wall clock seconds allowed per package, None for no limit
    :type timeout: float
    """

    build_kind: str = DEFAULT_BUILD_KIND
    platform: str = KOBO
    use_system_libs: bool = True
    triplet: str = TRIPLET
    timeout: Optional[float] = None


def work_root(root: Optional[PathLike] = None) -> pathlib.Path:
    """
    Get the root directory holding the sibling third-party checkouts.

    :param root: An explicitly requested root directory
    :type root: str

    :return: An absolute path to the root of the third-party tree
    :rtype: ``pathlib.Path``
    """
    if root is not None:
        return pathlib.Path(root).resolve()
    return pathlib.Path(os.environ.get(ROOT_ENV, os.getcwd())).resolve()


class WorkDirs:
    """
    Simple class used to hold references to the directories kobuild uses relative to a given root.

    :param root: The root of the third-party tree
    :type root: str
    """

    def __init__(self, root: PathLike) -> None:
        self.root: pathlib.Path = pathlib.Path(root)
        logs = os.environ.get(LOGS_ENV)
        self.logs: pathlib.Path = (
            pathlib.Path(logs).resolve() if logs else self.root / "logs"
        )

    def package(self, name: str) -> pathlib.Path:
        """
        Return the checkout directory of a package.
        """
        return self.root / name


def work_dirs(root: Optional[PathLike] = None) -> WorkDirs:
    """
    Returns a WorkDirs instance based on the given root.

    :param root: The desired root of the third-party tree
    :type root: str

    :return: A WorkDirs instance based on the given root
    :rtype: ``kobuild.common.WorkDirs``
    """
    return WorkDirs(work_root(root))


def get_toolchain(triplet: str = TRIPLET) -> Optional[pathlib.Path]:
    """
    Find the cross toolchain directory.

    ``KOBUILD_TOOLCHAIN`` wins when set, otherwise the toolchain is located
    from the ``<triplet>-gcc`` found on ``PATH``.

    :param triplet: The toolchain prefix
    :type triplet: str

    :return: The directory holding ``bin/<triplet>-gcc``, or None when no
        toolchain can be found
    :rtype: ``pathlib.Path``
    """
    override = os.environ.get(TOOLCHAIN_ENV)
    if override:
        return pathlib.Path(override).expanduser().resolve()
    compiler = shutil.which(f"{triplet}-gcc")
    if compiler is None:
        return None
    return pathlib.Path(compiler).resolve().parent.parent


def toolchain_tool(tool: str, triplet: str = TRIPLET) -> str:
    """
    Return the command used to run one of the cross toolchain's tools.
    """
    toolchain = get_toolchain(triplet)
    if toolchain is None:
        return f"{triplet}-{tool}"
    return str(toolchain / "bin" / f"{triplet}-{tool}")


class ProcessRunner:
    """
    Run external commands, streaming their output into the log.

    Standard output lines are logged at info level and standard error lines
    at error level as they arrive. The combined output is kept on the
    returned ``CommandResult`` for diagnostics. Output is read in chunks as
    soon as it is available, so a partial line never holds up the deadline,
    and bytes that are not valid UTF-8 are replaced.
    """

    chunk_size = 65536

    def __call__(
        self,
        cmd: Sequence[PathLike],
        cwd: Optional[PathLike] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """
        Run a command and wait for it.

        :param cmd: The command and its arguments
        :type cmd: list
        :param cwd: The directory to run the command in
        :type cwd: str
        :param env: The complete environment of the command
        :type env: dict
        :param timeout: Seconds to wait before killing the command
        :type timeout: float

        :raises CommandTimeout: If the command runs longer than ``timeout``
        :raises CommandError: If the command can not be started

        :return: The exit status and output of the command
        :rtype: ``kobuild.common.CommandResult``
        """
        args = [str(_) for _ in cmd]
        log.debug("Running command: %s", " ".join(args))
        try:
            p = subprocess.Popen(
                args,
                cwd=cwd,
                env=dict(env) if env is not None else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise CommandError(f"Unable to run '{args[0]}': {exc}") from exc
        deadline = None if timeout is None else time.monotonic() + timeout
        output: List[str] = []
        pending: Dict[int, bytes] = {}
        sel = selectors.DefaultSelector()
        for stream, level in ((p.stdout, logging.INFO), (p.stderr, logging.ERROR)):
            stream = cast(IO[bytes], stream)
            pending[stream.fileno()] = b""
            sel.register(stream, selectors.EVENT_READ, level)
        try:
            while sel.get_map():
                remaining = None
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        self._kill(p, args, timeout, output)
                for key, _ in sel.select(remaining):
                    fd = key.fd
                    chunk = os.read(fd, self.chunk_size)
                    if not chunk:
                        sel.unregister(key.fileobj)
                        self._emit(pending.pop(fd), key.data, output)
                        continue
                    *lines, pending[fd] = (pending[fd] + chunk).split(b"\n")
                    for line in lines:
                        self._emit(line, key.data, output)
            remaining = None
            if deadline is not None:
                remaining = max(deadline - time.monotonic(), 0)
            try:
                p.wait(remaining)
            except subprocess.TimeoutExpired:
                self._kill(p, args, timeout, output)
        finally:
            sel.close()
            if p.poll() is None:
                p.kill()
                p.wait()
            for stream in (p.stdout, p.stderr):
                if stream is not None:
                    stream.close()
        return CommandResult(p.returncode, "\n".join(output))

    @staticmethod
    def _emit(data: bytes, level: int, output: List[str]) -> None:
        if not data:
            return
        line = data.decode("utf-8", errors="replace").rstrip("\r")
        output.append(line)
        log.log(level, line)

    @staticmethod
    def _kill(
        p: "subprocess.Popen[bytes]",
        args: Sequence[str],
        timeout: Optional[float],
        output: Sequence[str],
    ) -> None:
        p.kill()
        p.wait()
        raise CommandTimeout(
            "Command '{}' did not finish within {}s".format(" ".join(args), timeout),
            CommandResult(p.returncode, "\n".join(output)),
        )


class DeadlineRunner:
    """
    Wrap a runner so every command shares one wall clock budget.

    :param runner: The runner doing the actual work
    :type runner: ``kobuild.common.ProcessRunner``
    :param timeout: Seconds available to all commands run through this wrapper
    :type timeout: float
    """

    def __init__(self, runner: ProcessRunner, timeout: float) -> None:
        self.runner = runner
        self.timeout = timeout
        self.deadline = time.monotonic() + timeout

    def __call__(
        self,
        cmd: Sequence[PathLike],
        cwd: Optional[PathLike] = None,
        env: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        remaining = self.deadline - time.monotonic()
        if remaining <= 0:
            raise CommandTimeout(
                "Command '{}' not started, the {}s budget is spent".format(
                    " ".join(map(str, cmd)), self.timeout
                )
            )
        if timeout is not None:
            remaining = min(timeout, remaining)
        return self.runner(cmd, cwd=cwd, env=env, timeout=remaining)


def runcmd(
    cmd: Sequence[PathLike],
    runner: Optional[ProcessRunner] = None,
    **kwargs: object,
) -> CommandResult:
    """
    Run a command.

    Run the provided command, raising an Exception when the command finishes
    with a non zero exit code. Keyword arguments are passed through to the runner.

    :param cmd: The command and its arguments
    :type cmd: list
    :param runner: The runner to use, defaults to a ``ProcessRunner``
    :type runner: ``kobuild.common.ProcessRunner``

    :return: The process result
    :rtype: ``kobuild.common.CommandResult``

    :raises CommandError: If the command finishes with a non zero exit code
    """
    if not cmd:
        raise KobuildException("No command provided to runcmd")
    if runner is None:
        runner = ProcessRunner()
    result = runner(cmd, **kwargs)  # type: ignore[arg-type]
    if not result.ok:
        raise CommandError(
            "Build cmd '{}' failed with exit code {}".format(
                " ".join(map(str, cmd)), result.returncode
            ),
            result,
        )
    return result
