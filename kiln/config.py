"""Configuration loading for Kiln.

Configuration lives in an optional ``kiln.yaml`` at the project root. Values
found there are merged over :data:`DEFAULT_CONFIG` and converted into a typed
:class:`BuildConfig` with absolute paths.

Key functions:
- load_config: Loads the raw configuration mapping from kiln.yaml.
- BuildConfig.from_project: Loads and validates configuration for a project.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .utils import split_patterns

CONFIG_FILENAME = "kiln.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "source_dir": "source",
    "build_dir": "build",
    "styles_dir": "sass",
    "styles": ["sass/**/*.scss"],
    "styles_output": "css",
    "output_style": "compressed",
    "templates": ["source/**/*.php"],
    "template_extension": ".php",
    "output_extension": ".html",
    "static": ["source/**", "!source/**/*.php"],
    "renderer": ["php", "-d", "include_path={dir}"],
    "render_jobs": 8,
    "host": "",
    "port": 9001,
    "ws_port": 35729,
}

_OUTPUT_STYLES = ("nested", "expanded", "compact", "compressed")


class ConfigError(Exception):
    """Invalid value in kiln.yaml.

    Attributes:
        key: Configuration key that failed validation.
        message: Human-readable error message.
    """

    def __init__(self, key: str, message: str):
        self.key = key
        self.message = message
        super().__init__(f"{key}: {message}")


def load_config(project_root: Path) -> dict[str, Any]:
    """Load site configuration from kiln.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.
    """
    config_path = project_root / CONFIG_FILENAME
    config = DEFAULT_CONFIG.copy()
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
            if not isinstance(loaded, dict):
                raise ConfigError(CONFIG_FILENAME, "expected a mapping at the top level")
            config.update(loaded)
    return config


@dataclass
class BuildConfig:
    """Resolved build configuration.

    Attributes:
        project_root: Root directory every pattern is relative to.
        source_dir: Base directory of templates and static assets.
        build_dir: Build output root.
        styles_dir: Base directory of stylesheets.
        styles_output_dir: Where compiled stylesheets are written.
        style_patterns: Globs selecting stylesheet sources.
        template_patterns: Globs selecting renderable templates.
        static_includes: Globs selecting static assets.
        static_excludes: Globs removed from the static selection.
        renderer_command: Command template for the external renderer.
    """

    project_root: Path
    source_dir: Path
    build_dir: Path
    styles_dir: Path
    styles_output_dir: Path
    style_patterns: list[str]
    template_patterns: list[str]
    static_includes: list[str]
    static_excludes: list[str]
    template_extension: str = ".php"
    output_extension: str = ".html"
    output_style: str = "compressed"
    renderer_command: list[str] = field(default_factory=list)
    render_jobs: int = 8
    host: str = ""
    port: int = 9001
    ws_port: int = 35729

    @classmethod
    def from_project(cls, project_root: Path, **overrides: Any) -> BuildConfig:
        """Load kiln.yaml from ``project_root`` and apply ``overrides``.

        Overrides whose value is None are ignored, so CLI options can be
        passed straight through.
        """
        raw = load_config(project_root)
        raw.update({key: value for key, value in overrides.items() if value is not None})
        return cls.from_mapping(project_root, raw)

    @classmethod
    def from_mapping(cls, project_root: Path, raw: Mapping[str, Any]) -> BuildConfig:
        """Validate a configuration mapping and resolve its paths."""
        root = project_root.resolve()
        values = {**DEFAULT_CONFIG, **raw}
        static_includes, static_excludes = split_patterns(_string_list(values, "static"))
        styles_dir = root / _string(values, "styles_dir")
        build_dir = root / _string(values, "build_dir")
        output_style = _string(values, "output_style")
        if output_style not in _OUTPUT_STYLES:
            raise ConfigError(
                "output_style", f"must be one of {', '.join(_OUTPUT_STYLES)}"
            )
        renderer = _string_list(values, "renderer")
        if not renderer:
            raise ConfigError("renderer", "must name a command")
        return cls(
            project_root=root,
            source_dir=root / _string(values, "source_dir"),
            build_dir=build_dir,
            styles_dir=styles_dir,
            styles_output_dir=build_dir / _string(values, "styles_output"),
            style_patterns=_string_list(values, "styles"),
            template_patterns=_string_list(values, "templates"),
            static_includes=static_includes,
            static_excludes=static_excludes,
            template_extension=_string(values, "template_extension"),
            output_extension=_string(values, "output_extension"),
            output_style=output_style,
            renderer_command=renderer,
            render_jobs=_positive_int(values, "render_jobs"),
            host=str(values.get("host") or ""),
            port=_positive_int(values, "port"),
            ws_port=_positive_int(values, "ws_port"),
        )


def _string(values: Mapping[str, Any], key: str) -> str:
    value = values.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(key, "must be a non-empty string")
    return value


def _string_list(values: Mapping[str, Any], key: str) -> list[str]:
    value = values.get(key)
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(key, "must be a string or a list of strings")
    return list(value)


def _positive_int(values: Mapping[str, Any], key: str) -> int:
    value = values.get(key)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(key, "must be an integer") from None
    if number <= 0:
        raise ConfigError(key, "must be positive")
    return number
