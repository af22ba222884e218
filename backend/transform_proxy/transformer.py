"""
Transform Invoker

Runs the external image tool for a named transform:

    <command> <template args...> <source file> <scratch file>

Argument construction is a pure function (build_arguments) so it can be
checked without spawning anything.
"""

import asyncio
import logging
import os
import tempfile
from typing import Iterable, List, Mapping, Optional, Sequence

from .catalog import IDENTITY_TRANSFORM, CatalogHolder
from .errors import TransformError, UnknownTransformError

logger = logging.getLogger(__name__)

WIDTH_PLACEHOLDER = "{{width}}"
HEIGHT_PLACEHOLDER = "{{height}}"

# Keep at most this much of the tool's stderr in error messages
_STDERR_TAIL = 500


def build_arguments(templates: Iterable[str], width: int, height: int) -> List[str]:
    """
    Substitute width/height into each template, then split on whitespace.

    A single template may expand into several arguments:
        ["-resize {{width}}x{{height}}"] -> ["-resize", "100x50"]
    """
    args = []
    for template in templates:
        filled = template.replace(WIDTH_PLACEHOLDER, str(width))
        filled = filled.replace(HEIGHT_PLACEHOLDER, str(height))
        args.extend(filled.split())
    return args


def _remove_quietly(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"[Transform] Failed to remove scratch file {path}: {e}")


class TransformInvoker:
    """Maps transform names to tool invocations using the live catalog."""

    def __init__(
        self,
        catalog: CatalogHolder,
        command: Sequence[str] = ("convert",),
        scratch_dir: Optional[str] = None,
        scratch_suffix: str = ".jpg",
        timeout: Optional[float] = 60.0,
        thread_env: Optional[Mapping[str, str]] = None,
    ):
        self.catalog = catalog
        self.command = tuple(command)
        self.scratch_dir = scratch_dir
        self.scratch_suffix = scratch_suffix
        self.timeout = timeout
        self.thread_env = dict(thread_env or {"OMP_NUM_THREADS": "1"})

    def resolve(self, name: str, width: int, height: int) -> Optional[List[str]]:
        """
        Build the template arguments for `name`.

        Returns None for the identity transform.

        Raises:
            UnknownTransformError: the catalog has no such transform.
        """
        if name == IDENTITY_TRANSFORM:
            return None
        templates = self.catalog.current.get(name)
        if templates is None:
            raise UnknownTransformError(name)
        return build_arguments(templates, width, height)

    def _new_scratch_path(self) -> str:
        try:
            fd, path = tempfile.mkstemp(prefix="thumb", suffix=self.scratch_suffix, dir=self.scratch_dir)
        except OSError as e:
            raise TransformError(f"Upstream failed Tempfile: {e}") from e
        os.close(fd)
        return path

    async def run(self, args: List[str], source: str) -> str:
        """
        Run the tool with pre-built template arguments against `source`.

        Returns:
            Path of the scratch file holding the output. The caller owns it
            and must remove it.

        Raises:
            TransformError: spawn failure, non-zero exit, or timeout. The
                scratch file is already removed when this is raised.
        """
        scratch = self._new_scratch_path()
        argv = [*self.command, *args, source, scratch]
        env = {**os.environ, **self.thread_env}

        try:
            await self._execute(argv, env)
        except BaseException:
            _remove_quietly(scratch)
            raise
        return scratch

    async def _execute(self, argv: List[str], env: dict) -> None:
        logger.debug(f"[Transform] Running: {' '.join(argv)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise TransformError(f"Upstream failed cmd Run: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            await self._kill(process)
            raise TransformError(f"Upstream failed cmd Run: timed out after {self.timeout}s")
        except BaseException:
            await self._kill(process)
            raise

        if process.returncode != 0:
            tail = (stderr or b"").decode(errors="replace").strip()[-_STDERR_TAIL:]
            logger.warning(f"[Transform] Exit status {process.returncode}: {tail}")
            raise TransformError(f"Upstream failed cmd Run: exit status {process.returncode}")

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
