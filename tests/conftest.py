"""Shared test fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import yaml

from kiln.config import BuildConfig

# Stands in for `php`: echoes stdin to stdout.
ECHO_SCRIPT = "import sys; sys.stdout.buffer.write(sys.stdin.buffer.read())"
ECHO_COMMAND = [sys.executable, "-c", ECHO_SCRIPT]


def create_project(root: Path, renderer: list[str] | None = None) -> Path:
    """Lay out a small site: templates, static assets and stylesheets."""
    source = root / "source"
    (source / "blog").mkdir(parents=True)
    (source / "img").mkdir()
    (root / "sass").mkdir()

    (root / "kiln.yaml").write_text(
        yaml.safe_dump({"renderer": renderer or ECHO_COMMAND}), encoding="utf-8"
    )
    (source / "index.php").write_text("<html><body>Home</body></html>", encoding="utf-8")
    (source / "blog" / "post.php").write_text("<p>Post</p>", encoding="utf-8")
    (source / "empty.php").write_text("", encoding="utf-8")
    (source / "img" / "logo.txt").write_text("logo", encoding="utf-8")
    (source / "robots.txt").write_text("User-agent: *", encoding="utf-8")
    (root / "sass" / "_vars.scss").write_text("$brand: red;\n", encoding="utf-8")
    (root / "sass" / "main.scss").write_text(
        '@import "vars";\n.main { color: $brand; }\n', encoding="utf-8"
    )
    return root


@pytest.fixture()
def project(tmp_path) -> Path:
    return create_project(tmp_path)


@pytest.fixture()
def config(project) -> BuildConfig:
    return BuildConfig.from_project(project)
