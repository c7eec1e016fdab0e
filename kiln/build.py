"""Site building functionality for Kiln.

This module wires the pipeline stages together: it owns the build output
tree, turns stage results into files and log lines, and registers the stages
as tasks on a TaskGraph.

Key components:
- SiteBuilder: Runs each stage (clean, copy, render, styles) and the
  single-file actions used by the watcher.
- BuildReport: What a full build produced.
- create_task_graph: Registers the standard tasks.
- BUILD_SEQUENCE: clean, then copy, then render and styles in parallel.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from .assets import AssetCopier, SourceSet
from .config import BuildConfig
from .protocols import ReloadNotifier
from .renderers import Diagnostic, ExternalRenderer, RenderError, RenderResult, SubprocessSpawner
from .styles import CompiledStyle, StyleCompiler
from .tasks import TaskGraph
from .utils import display_path, format_elapsed, remove_dir, replace_extension

if TYPE_CHECKING:
    from .server import DevServer
    from .watcher import Watcher

logger = logging.getLogger(__name__)

BUILD_SEQUENCE: list = ["clean", "copy", ["render", "styles"]]


@dataclass
class BuildReport:
    """Result of a full build.

    Attributes:
        rendered: Pages written by the renderer.
        dropped: Templates that produced no content.
        failed: Templates the renderer could not be run for.
        copied: Static files written.
        styles: Compiled stylesheets written.
    """

    rendered: list[Path] = field(default_factory=list)
    dropped: list[Path] = field(default_factory=list)
    failed: list[Path] = field(default_factory=list)
    copied: list[Path] = field(default_factory=list)
    styles: list[Path] = field(default_factory=list)

    @property
    def output_paths(self) -> list[Path]:
        """Every build output path written."""
        return [*self.copied, *self.rendered, *self.styles]


class SiteBuilder:
    """Runs the build stages against one project.

    Each stage writes a disjoint part of the build tree: static files,
    rendered pages and compiled styles.

    Attributes:
        config: Resolved build configuration.
        renderer: Renders templates through the external interpreter.
        style_compiler: Compiles the stylesheet set.
        copier: Copies static files.
        notifier: Optional live-reload notifier.
        static_set: Static assets selection.
        template_set: Renderable templates selection.
        report: Report of the current full build.
    """

    def __init__(
        self,
        config: BuildConfig,
        renderer: ExternalRenderer | None = None,
        style_compiler: StyleCompiler | None = None,
        copier: AssetCopier | None = None,
        notifier: ReloadNotifier | None = None,
    ):
        self.config = config
        self.renderer = renderer or ExternalRenderer(
            SubprocessSpawner(config.renderer_command, config.project_root),
            source_extension=config.template_extension,
            target_extension=config.output_extension,
        )
        self.style_compiler = style_compiler or StyleCompiler(
            config.project_root,
            config.styles_dir,
            config.styles_output_dir,
            patterns=config.style_patterns,
            output_style=config.output_style,
        )
        self.copier = copier or AssetCopier(config.project_root)
        self.notifier = notifier
        self.static_set = SourceSet(
            config.project_root, config.static_includes, config.static_excludes
        )
        self.template_set = SourceSet(config.project_root, config.template_patterns)
        self.report = BuildReport()

    # Full-build stages

    async def clean(self) -> None:
        """Remove the build output directory."""
        removed = await asyncio.to_thread(remove_dir, self.config.build_dir)
        if removed:
            logger.info("Clean: removed %s", self._display(self.config.build_dir))

    async def copy_static(self) -> list[Path]:
        """Copy every static asset into the build directory."""
        written = await asyncio.to_thread(
            self.copier.copy, self.static_set, self.config.source_dir, self.config.build_dir
        )
        self.report.copied.extend(written)
        return written

    async def render_templates(self) -> list[RenderResult]:
        """Render every template concurrently.

        Templates that produce no content have any stale output removed.
        Per-file failures are logged and do not fail the stage.
        """
        sources = await asyncio.to_thread(lambda: list(self.template_set.iter_files()))
        limit = asyncio.Semaphore(self.config.render_jobs)

        async def bounded(source: Path) -> RenderResult | None:
            async with limit:
                return await self.render_file(source, remove_stale=True, record=True)

        results = await asyncio.gather(*(bounded(source) for source in sources))
        return [result for result in results if result is not None]

    async def compile_styles(self, record: bool = False) -> list[CompiledStyle]:
        """Compile the whole stylesheet set.

        Args:
            record: Add the compiled stylesheets to the build report.
        """
        compiled = await asyncio.to_thread(self.style_compiler.compile_all)
        if record:
            self.report.styles.extend(style.destination for style in compiled)
        return compiled

    # Single-file actions

    async def render_file(
        self, source: Path, remove_stale: bool = False, record: bool = False
    ) -> RenderResult | None:
        """Render one template and write its output.

        Args:
            source: Template to render.
            remove_stale: Delete an existing output when the template now
                renders to nothing.
            record: Add the outcome to the build report. Only full builds
                record; incremental renders leave the report alone.

        Returns:
            The render result, or None if the renderer could not run or the
            output could not be written.
        """
        report = self.report if record else BuildReport()
        try:
            result = await self.renderer.render(source, self.config.source_dir)
        except RenderError as exc:
            logger.error("Render Error: %s %s", self._display(exc.source_path), exc.message)
            report.failed.append(source)
            return None

        for diagnostic in result.diagnostics:
            self._log_diagnostic(diagnostic)

        rel_source = self._display(source)
        dest = self.config.build_dir / result.destination
        if result.dropped:
            logger.info(
                "Render: Dropping %s because the renderer returned no content after %s",
                rel_source,
                format_elapsed(result.elapsed),
            )
            report.dropped.append(source)
            if remove_stale:
                await asyncio.to_thread(dest.unlink, missing_ok=True)
            return result

        try:
            await asyncio.to_thread(_write_bytes, dest, result.output)
        except OSError as exc:
            logger.error("Render Error: could not write %s: %s", self._display(dest), exc)
            report.failed.append(source)
            return None
        logger.info(
            "Render: Rendered %s to %s after %s",
            rel_source,
            result.destination.as_posix(),
            format_elapsed(result.elapsed),
        )
        report.rendered.append(dest)
        return result

    async def copy_file(self, source: Path) -> Path | None:
        """Copy one static asset into the build directory."""
        return await asyncio.to_thread(
            self.copier.copy_file, source, self.config.source_dir, self.config.build_dir
        )

    def output_path_for(self, source: Path) -> Path | None:
        """Build output path mirroring ``source``.

        The extension is rewritten only for renderable templates.

        Returns:
            The output path, or None if ``source`` is outside the source directory.
        """
        try:
            rel = source.relative_to(self.config.source_dir)
        except ValueError:
            return None
        if self.template_set.matches(source):
            rel = replace_extension(
                rel, self.config.template_extension, self.config.output_extension
            )
        return self.config.build_dir / rel

    async def remove_output(self, source: Path) -> Path | None:
        """Delete the build output corresponding to a deleted source file.

        Returns:
            The removed path, or None if there was nothing to remove.

        Raises:
            OSError: If the file exists but could not be removed.
        """
        dest = self.output_path_for(source)
        if dest is None or not dest.is_file():
            return None
        await asyncio.to_thread(dest.unlink)
        logger.info(
            "%s was removed, removing %s",
            self._display(source),
            display_path(dest, self.config.build_dir),
        )
        return dest

    def notify(self, paths: Sequence[Path]) -> None:
        """Forward changed build paths to the reload notifier, if any."""
        if self.notifier is not None and paths:
            self.notifier.notify(list(paths))

    def _log_diagnostic(self, diagnostic: Diagnostic) -> None:
        level = logging.ERROR if "error" in diagnostic.severity else logging.WARNING
        logger.log(
            level,
            "Render %s: %s:%d %s",
            diagnostic.severity,
            self._display(diagnostic.path),
            diagnostic.line,
            diagnostic.message,
        )

    def _display(self, path: Path) -> str:
        return display_path(path, self.config.project_root)


def _write_bytes(dest: Path, data: bytes) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_bytes(data)


def create_task_graph(
    builder: SiteBuilder,
    server: DevServer | None = None,
    watcher: Watcher | None = None,
) -> TaskGraph:
    """Register the standard tasks for ``builder``.

    Tasks:
        clean, copy, render, styles: the individual stages.
        build: runs BUILD_SEQUENCE, then notifies reload clients.
        serve: starts the dev server after ``build`` (when a server is given).
        watch: starts the watcher after ``serve`` or ``build`` (when a watcher is given).

    Returns:
        The populated TaskGraph.
    """
    graph = TaskGraph()
    graph.register("clean", [], builder.clean)
    graph.register("copy", [], builder.copy_static)
    graph.register("render", [], builder.render_templates)
    graph.register("styles", [], functools.partial(builder.compile_styles, record=True))

    async def build() -> None:
        builder.report = BuildReport()
        await graph.run(BUILD_SEQUENCE)
        builder.notify(builder.report.output_paths)

    graph.register("build", [], build)
    if server is not None:
        graph.register("serve", ["build"], server.start)
    if watcher is not None:
        graph.register("watch", ["serve" if server is not None else "build"], watcher.watch)
    return graph
