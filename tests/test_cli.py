import logging

from click.testing import CliRunner

from kiln import __version__
from kiln.cli import cli
from kiln.log_utils import ClickFormatter, ClickHandler, setup_logging

from conftest import create_project


def test_cli_build_writes_site(tmp_path):
    create_project(tmp_path)
    runner = CliRunner()

    result = runner.invoke(cli, ["-C", str(tmp_path), "build"], catch_exceptions=False)

    assert result.exit_code == 0
    assert "Built 2 pages, 1 stylesheets and 2 static files" in result.output
    assert (tmp_path / "build" / "index.html").exists()
    assert (tmp_path / "build" / "css" / "main.css").exists()


def test_cli_build_failure_exits_non_zero(tmp_path, monkeypatch):
    create_project(tmp_path)

    async def broken_clean(self):
        raise PermissionError("build dir is locked")

    monkeypatch.setattr("kiln.build.SiteBuilder.clean", broken_clean)

    result = CliRunner().invoke(cli, ["-C", str(tmp_path), "build"])

    assert result.exit_code == 1
    assert "Build failed:" in result.output
    assert "Task: clean" in result.output
    assert "build dir is locked" in result.output
    assert not (tmp_path / "build" / "index.html").exists()


def test_cli_rejects_invalid_configuration(tmp_path):
    (tmp_path / "kiln.yaml").write_text("port: -1\n", encoding="utf-8")

    result = CliRunner().invoke(cli, ["-C", str(tmp_path), "build"])

    assert result.exit_code == 1
    assert "Invalid configuration:" in result.output
    assert "port: must be positive" in result.output


def test_cli_watch_builds_then_serves(tmp_path, monkeypatch):
    create_project(tmp_path)
    called = {}

    async def fake_start(self):
        called["ports"] = (self.http_port, self.ws_port)
        called["built"] = (self.output_dir / "index.html").exists()

    async def fake_watch(self):
        called["watching"] = self.notifier is not None

    monkeypatch.setattr("kiln.server.DevServer.start", fake_start)
    monkeypatch.setattr("kiln.watcher.Watcher.watch", fake_watch)

    result = CliRunner().invoke(
        cli,
        ["-C", str(tmp_path), "watch", "--port", "5050", "--ws-port", "5051"],
        catch_exceptions=False,
    )

    assert result.exit_code == 0
    assert called == {"ports": (5050, 5051), "built": True, "watching": True}


def test_cli_clean_removes_build_dir(tmp_path):
    create_project(tmp_path)
    (tmp_path / "build").mkdir()
    (tmp_path / "build" / "stale.html").write_text("x", encoding="utf-8")

    result = CliRunner().invoke(cli, ["-C", str(tmp_path), "clean"], catch_exceptions=False)

    assert result.exit_code == 0
    assert not (tmp_path / "build").exists()


def test_cli_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_module_main_entrypoint():
    from kiln.__main__ import main

    assert callable(main)


def test_main_invokes_cli(monkeypatch):
    import kiln.cli as cli_mod

    called = {}
    monkeypatch.setattr(cli_mod, "cli", lambda: called.setdefault("ran", True))
    cli_mod.main()
    assert called["ran"]


def test_setup_logging_replaces_handler():
    logger = setup_logging(verbose=True, color=False)
    setup_logging(verbose=False, color=False)

    handlers = [h for h in logger.handlers if isinstance(h, ClickHandler)]
    assert len(handlers) == 1
    assert logger.level == logging.INFO


def test_click_formatter_prefixes_timestamp():
    record = logging.LogRecord("kiln.build", logging.ERROR, __file__, 1, "Render Error: %s", ("x",), None)

    plain = ClickFormatter(color=False).format(record)
    colored = ClickFormatter(color=True).format(record)

    assert plain.startswith("[") and plain.endswith("] Render Error: x")
    assert "\x1b[" in colored
    assert "Render Error: x" in colored
