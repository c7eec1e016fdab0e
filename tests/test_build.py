import asyncio
import logging
import shutil
import sys
from pathlib import Path

from kiln.build import BUILD_SEQUENCE, BuildReport, SiteBuilder, create_task_graph
from kiln.config import BuildConfig


class RecordingNotifier:
    def __init__(self):
        self.calls = []

    def notify(self, paths):
        self.calls.append(list(paths))


def build_files(config):
    return sorted(
        p.relative_to(config.build_dir).as_posix()
        for p in config.build_dir.rglob("*")
        if p.is_file()
    )


def test_full_build_produces_site(config, caplog):
    builder = SiteBuilder(config)
    graph = create_task_graph(builder)

    with caplog.at_level(logging.INFO, logger="kiln"):
        asyncio.run(graph.run(["build"]))

    assert build_files(config) == [
        "blog/post.html",
        "css/main.css",
        "css/main.css.map",
        "img/logo.txt",
        "index.html",
        "robots.txt",
    ]
    build = config.build_dir
    assert (build / "index.html").read_text(encoding="utf-8") == "<html><body>Home</body></html>"
    assert (build / "blog" / "post.html").read_text(encoding="utf-8") == "<p>Post</p>"
    assert ".main{color:red}" in (build / "css" / "main.css").read_text(encoding="utf-8")

    report = builder.report
    assert sorted(p.name for p in report.rendered) == ["index.html", "post.html"]
    assert [p.name for p in report.dropped] == ["empty.php"]
    assert report.failed == []
    assert sorted(p.name for p in report.copied) == ["logo.txt", "robots.txt"]
    assert [p.name for p in report.styles] == ["main.css"]

    assert "Starting 'build'..." in caplog.text
    assert "Finished 'build' after" in caplog.text
    assert "Render: Dropping source/empty.php because the renderer returned no content" in caplog.text
    assert "Render: Rendered source/index.php to index.html after" in caplog.text


def test_build_sequence_runs_clean_first(config):
    stale = config.build_dir / "leftover.txt"
    stale.parent.mkdir(parents=True)
    stale.write_text("old", encoding="utf-8")

    asyncio.run(create_task_graph(SiteBuilder(config)).run(["build"]))

    assert not stale.exists()
    assert BUILD_SEQUENCE == ["clean", "copy", ["render", "styles"]]


def test_render_removes_stale_output_for_dropped_template(config):
    stale = config.build_dir / "empty.html"
    stale.parent.mkdir(parents=True)
    stale.write_text("previous content", encoding="utf-8")

    asyncio.run(SiteBuilder(config).render_templates())

    assert not stale.exists()
    assert (config.build_dir / "index.html").exists()


def test_render_jobs_bound_concurrency(project):
    for i in range(6):
        (project / "source" / f"page{i}.php").write_text(f"p{i}", encoding="utf-8")
    config = BuildConfig.from_project(project, render_jobs=1)

    results = asyncio.run(SiteBuilder(config).render_templates())

    assert len(results) == 9
    assert (config.build_dir / "page5.html").read_text(encoding="utf-8") == "p5"


def test_missing_renderer_does_not_fail_build(project, caplog):
    config = BuildConfig.from_project(project, renderer=[str(project / "no-such-renderer")])
    builder = SiteBuilder(config)

    with caplog.at_level(logging.ERROR, logger="kiln"):
        asyncio.run(create_task_graph(builder).run(["build"]))

    assert len(builder.report.failed) == 3
    assert builder.report.rendered == []
    assert (config.build_dir / "robots.txt").exists()
    assert (config.build_dir / "css" / "main.css").exists()
    assert "Render Error:" in caplog.text
    assert "could not start renderer" in caplog.text


def test_static_copy_failure_does_not_fail_build(config, monkeypatch, caplog):
    real_copy2 = shutil.copy2

    def flaky_copy2(source, dest):
        if Path(source).name == "robots.txt":
            raise PermissionError(13, "Permission denied", str(source))
        return real_copy2(source, dest)

    monkeypatch.setattr("kiln.assets.shutil.copy2", flaky_copy2)
    builder = SiteBuilder(config)

    with caplog.at_level(logging.ERROR, logger="kiln"):
        asyncio.run(create_task_graph(builder).run(["build"]))

    assert not (config.build_dir / "robots.txt").exists()
    assert (config.build_dir / "img" / "logo.txt").exists()
    assert (config.build_dir / "index.html").exists()
    assert (config.build_dir / "css" / "main.css").exists()
    assert [p.name for p in builder.report.copied] == ["logo.txt"]
    assert "Copy Error: source/robots.txt" in caplog.text


def test_single_file_actions_leave_report_alone(config):
    builder = SiteBuilder(config)
    asyncio.run(create_task_graph(builder).run(["build"]))
    before = (
        list(builder.report.rendered),
        list(builder.report.dropped),
        list(builder.report.styles),
    )

    async def incremental():
        await builder.render_file(config.source_dir / "index.php")
        await builder.render_file(config.source_dir / "empty.php")
        await builder.compile_styles()

    asyncio.run(incremental())

    after = (builder.report.rendered, builder.report.dropped, builder.report.styles)
    assert after == before


def test_diagnostics_are_logged_with_severity(project, caplog):
    script = (
        "import sys\n"
        "sys.stdout.write(sys.stdin.read())\n"
        "sys.stderr.write('PHP Warning:  careful in Standard input code on line 2\\n')\n"
        "sys.stderr.write('PHP Parse error:  broken in Standard input code on line 5\\n')\n"
    )
    config = BuildConfig.from_project(project, renderer=[sys.executable, "-c", script])
    builder = SiteBuilder(config)

    with caplog.at_level(logging.INFO, logger="kiln"):
        asyncio.run(builder.render_file(project.resolve() / "source" / "index.php"))

    levels = {r.getMessage(): r.levelno for r in caplog.records if r.getMessage().startswith("Render ")}
    assert levels["Render warning: source/index.php:2 careful"] == logging.WARNING
    assert levels["Render parse error: source/index.php:5 broken"] == logging.ERROR
    assert (config.build_dir / "index.html").exists()


def test_build_notifies_with_every_output(config):
    notifier = RecordingNotifier()
    builder = SiteBuilder(config, notifier=notifier)

    asyncio.run(create_task_graph(builder).run(["build"]))

    assert len(notifier.calls) == 1
    names = sorted(p.name for p in notifier.calls[0])
    assert names == ["index.html", "logo.txt", "main.css", "post.html", "robots.txt"]


def test_report_is_reset_for_each_build(config):
    builder = SiteBuilder(config)
    graph = create_task_graph(builder)

    asyncio.run(graph.run(["build"]))
    asyncio.run(graph.run(["build"]))

    assert len(builder.report.rendered) == 2
    assert len(builder.report.copied) == 2


def test_output_path_for_and_remove_output(config):
    builder = SiteBuilder(config)
    asyncio.run(create_task_graph(builder).run(["build"]))
    source = config.source_dir

    assert builder.output_path_for(source / "blog" / "post.php") == config.build_dir / "blog" / "post.html"
    assert builder.output_path_for(source / "robots.txt") == config.build_dir / "robots.txt"
    assert builder.output_path_for(config.project_root / "elsewhere.php") is None

    removed = asyncio.run(builder.remove_output(source / "blog" / "post.php"))
    assert removed == config.build_dir / "blog" / "post.html"
    assert not removed.exists()
    assert (config.build_dir / "index.html").exists()
    assert asyncio.run(builder.remove_output(source / "blog" / "post.php")) is None


def test_clean_task_removes_build_dir(config):
    config.build_dir.mkdir()
    (config.build_dir / "x.html").write_text("x", encoding="utf-8")

    asyncio.run(create_task_graph(SiteBuilder(config)).run(["clean"]))

    assert not config.build_dir.exists()


def test_watch_task_runs_after_build_and_serve(config):
    order = []

    class Stub:
        async def start(self):
            order.append(("serve", (config.build_dir / "index.html").exists()))

        async def watch(self):
            order.append(("watch", None))

    builder = SiteBuilder(config)
    assert "serve" not in create_task_graph(builder).names
    assert "watch" in create_task_graph(builder, watcher=Stub()).names

    graph = create_task_graph(builder, server=Stub(), watcher=Stub())
    assert graph.names == ["build", "clean", "copy", "render", "serve", "styles", "watch"]

    asyncio.run(graph.run(["watch"]))

    assert order == [("serve", True), ("watch", None)]


def test_output_paths_property():
    report = BuildReport()
    assert report.output_paths == []
