"""File watching and incremental rebuilds for Kiln.

A watchdog observer thread reports filesystem changes; each change becomes a
FileEvent pushed onto an asyncio queue consumed by a single dispatch loop.
The loop classifies the event and starts exactly one incremental action:

- template added/changed -> re-render that template
- template deleted       -> delete its rendered page
- stylesheet (any kind)  -> recompile the whole stylesheet set
- static added/changed   -> re-copy that file
- static deleted         -> delete its copy

Actions run concurrently and are not sequenced per file, so overlapping
renders of the same template finish in any order and the last write wins.

Key classes:
- FileEvent: A classified filesystem change.
- Watcher: Subscription management and the dispatch loop.
- WatchSubscription: Handle that stops the observer and the loop.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .protocols import ReloadNotifier
from .utils import display_path, static_prefix

if TYPE_CHECKING:
    from .build import SiteBuilder

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    ADDED = "added"
    CHANGED = "changed"
    DELETED = "deleted"


class WatchGroup(str, Enum):
    TEMPLATES = "templates"
    STYLES = "styles"
    STATIC = "static"


class WatchAction(str, Enum):
    RERENDER = "rerender"
    RECOMPILE_STYLES = "recompile_styles"
    RECOPY = "recopy"
    DELETE = "delete"


@dataclass(frozen=True)
class FileEvent:
    """A filesystem change inside one of the watched groups.

    Attributes:
        kind: What happened to the file.
        path: Absolute path of the file.
        group: Which glob group the path matched.
    """

    kind: EventKind
    path: Path
    group: WatchGroup


def classify(event: FileEvent) -> WatchAction:
    """Choose the incremental action for an event."""
    if event.group is WatchGroup.STYLES:
        return WatchAction.RECOMPILE_STYLES
    if event.kind is EventKind.DELETED:
        return WatchAction.DELETE
    if event.group is WatchGroup.TEMPLATES:
        return WatchAction.RERENDER
    return WatchAction.RECOPY


class _EventBridge(FileSystemEventHandler):
    """Forwards watchdog events from the observer thread to the Watcher."""

    def __init__(self, watcher: Watcher):
        super().__init__()
        self.watcher = watcher

    def on_created(self, event):
        if not event.is_directory:
            self.watcher.push(EventKind.ADDED, event.src_path)

    def on_modified(self, event):
        if not event.is_directory:
            self.watcher.push(EventKind.CHANGED, event.src_path)

    def on_deleted(self, event):
        if not event.is_directory:
            self.watcher.push(EventKind.DELETED, event.src_path)

    def on_moved(self, event):
        if not event.is_directory:
            self.watcher.push(EventKind.DELETED, event.src_path)
            self.watcher.push(EventKind.ADDED, event.dest_path)


class WatchSubscription:
    """Handle returned by :meth:`Watcher.subscribe`."""

    def __init__(self, watcher: Watcher, observer):
        self._watcher = watcher
        self._observer = observer
        self.active = True

    def cancel(self) -> None:
        """Stop the observer and let the dispatch loop finish. Does not block."""
        if not self.active:
            return
        self.active = False
        self._observer.stop()
        self._watcher._close()

    async def close(self) -> None:
        """Cancel, then wait for the observer thread off the event loop."""
        self.cancel()
        await asyncio.to_thread(self._observer.join)


class Watcher:
    """Watches source files and dispatches incremental rebuilds.

    Attributes:
        builder: Performs the incremental actions.
        notifier: Receives changed build paths after each action.
    """

    def __init__(
        self,
        builder: SiteBuilder,
        notifier: ReloadNotifier | None = None,
        observer_factory: Callable[[], object] = Observer,
    ):
        self.builder = builder
        self.notifier = notifier if notifier is not None else builder.notifier
        self._observer_factory = observer_factory
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[FileEvent | None] | None = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def config(self):
        return self.builder.config

    def group_for(self, path: Path) -> WatchGroup | None:
        """Glob group of ``path``, in precedence order templates, styles, static."""
        try:
            path.relative_to(self.config.build_dir)
            return None
        except ValueError:
            pass
        if self.builder.template_set.matches(path):
            return WatchGroup.TEMPLATES
        if self.builder.style_compiler.matches(path):
            return WatchGroup.STYLES
        if self.builder.static_set.matches(path):
            return WatchGroup.STATIC
        return None

    def make_event(self, kind: EventKind, path: str | Path) -> FileEvent | None:
        """Build a FileEvent, or None when the path is not watched."""
        resolved = Path(path)
        if not resolved.is_absolute():
            resolved = self.config.project_root / resolved
        group = self.group_for(resolved)
        if group is None:
            return None
        return FileEvent(kind=kind, path=resolved, group=group)

    def watch_roots(self) -> list[Path]:
        """Existing directories that cover every watched pattern."""
        root = self.config.project_root
        patterns = [
            *self.config.template_patterns,
            *self.config.style_patterns,
            *self.config.static_includes,
        ]
        candidates = sorted({root / static_prefix(p) for p in patterns})
        roots: list[Path] = []
        for candidate in candidates:
            if not candidate.is_dir():
                continue
            if any(candidate.is_relative_to(existing) for existing in roots):
                continue
            roots.append(candidate)
        return roots

    def subscribe(self) -> WatchSubscription:
        """Start the observer. Must be called from the running event loop."""
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        observer = self._observer_factory()
        handler = _EventBridge(self)
        for root in self.watch_roots():
            observer.schedule(handler, str(root), recursive=True)
            logger.info("Watching %s", display_path(root, self.config.project_root))
        observer.start()
        return WatchSubscription(self, observer)

    def push(self, kind: EventKind, path: str | Path) -> None:
        """Queue a change. Safe to call from the observer thread."""
        if self._loop is None or self._queue is None:
            return
        event = self.make_event(kind, path)
        if event is None:
            logger.debug("Ignoring %s event for %s", kind.value, path)
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    def _close(self) -> None:
        if self._loop is not None and self._queue is not None:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

    async def run(self) -> None:
        """Consume queued events until the subscription is cancelled.

        In-flight actions are awaited before returning.
        """
        if self._queue is None:
            raise RuntimeError("Watcher.run() called before subscribe()")
        while True:
            event = await self._queue.get()
            if event is None:
                break
            self.dispatch(event)
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def watch(self) -> None:
        """Subscribe and run until cancelled."""
        subscription = self.subscribe()
        try:
            await self.run()
        finally:
            await subscription.close()

    def dispatch(self, event: FileEvent) -> asyncio.Task:
        """Start the action for ``event`` without waiting for it."""
        action = classify(event)
        logger.debug(
            "%s %s -> %s",
            display_path(event.path, self.config.project_root),
            event.kind.value,
            action.value,
        )
        task = asyncio.get_running_loop().create_task(self.perform(action, event))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def perform(self, action: WatchAction, event: FileEvent) -> list[Path]:
        """Run one incremental action and notify reload clients.

        Errors are logged; they never stop the watch loop.

        Returns:
            Build paths that changed.
        """
        try:
            changed = await self._run_action(action, event)
        except Exception as exc:
            logger.error(
                "Watch: %s of %s failed: %s",
                action.value,
                display_path(event.path, self.config.project_root),
                exc,
            )
            return []
        if changed and self.notifier is not None:
            self.notifier.notify(changed)
        return changed

    async def _run_action(self, action: WatchAction, event: FileEvent) -> list[Path]:
        if action is WatchAction.RERENDER:
            result = await self.builder.render_file(event.path)
            if result is None or result.dropped:
                return []
            return [self.config.build_dir / result.destination]
        if action is WatchAction.RECOMPILE_STYLES:
            compiled = await self.builder.compile_styles()
            return [style.destination for style in compiled]
        if action is WatchAction.RECOPY:
            dest = await self.builder.copy_file(event.path)
            return [dest] if dest is not None else []
        dest = await self.builder.remove_output(event.path)
        return [dest] if dest is not None else []
