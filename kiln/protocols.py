"""Protocol definitions for Kiln.

This module defines the interfaces (protocols) between the pipeline and its
external collaborators, so each can be swapped for a fake in tests or for a
different tool in production.

These protocols enable:
- Rendering through any process that reads stdin and writes stdout/stderr
- Live reload notification without binding the pipeline to a transport
"""

from __future__ import annotations

import asyncio
from abc import abstractmethod
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class ProcessHandle(Protocol):
    """A running external process with piped standard streams.

    ``asyncio.subprocess.Process`` satisfies this protocol.
    """

    stdin: asyncio.StreamWriter | None
    stdout: asyncio.StreamReader | None
    stderr: asyncio.StreamReader | None

    @abstractmethod
    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        ...


@runtime_checkable
class ProcessSpawner(Protocol):
    """Protocol for starting the external renderer.

    Implementations decide which program runs; the renderer only relies on
    the returned handle's streams.
    """

    @abstractmethod
    async def spawn(self, source: Path, base_dir: Path) -> ProcessHandle:
        """Start a process that will render ``source``.

        Args:
            source: File about to be streamed to the process.
            base_dir: Render base directory, used to derive the execution context.

        Returns:
            Handle with piped stdin, stdout and stderr.

        Raises:
            OSError: If the process could not be started.
        """
        ...


@runtime_checkable
class ReloadNotifier(Protocol):
    """Protocol for telling live-reload clients that build output changed."""

    @abstractmethod
    def notify(self, paths: Sequence[Path]) -> None:
        """Announce changed build output paths.

        Must not block; delivery is best-effort.

        Args:
            paths: Absolute paths inside the build directory that changed.
        """
        ...
