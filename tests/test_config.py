from pathlib import Path

import pytest
import yaml

from kiln.config import DEFAULT_CONFIG, BuildConfig, ConfigError, load_config


def write_config(root: Path, data) -> None:
    (root / "kiln.yaml").write_text(yaml.safe_dump(data), encoding="utf-8")


def test_defaults_without_config_file(tmp_path):
    config = BuildConfig.from_project(tmp_path)
    root = tmp_path.resolve()

    assert config.project_root == root
    assert config.source_dir == root / "source"
    assert config.build_dir == root / "build"
    assert config.styles_dir == root / "sass"
    assert config.styles_output_dir == root / "build" / "css"
    assert config.style_patterns == ["sass/**/*.scss"]
    assert config.template_patterns == ["source/**/*.php"]
    assert config.static_includes == ["source/**"]
    assert config.static_excludes == ["source/**/*.php"]
    assert config.renderer_command == ["php", "-d", "include_path={dir}"]
    assert config.output_style == "compressed"
    assert (config.port, config.ws_port, config.render_jobs) == (9001, 35729, 8)


def test_yaml_values_override_defaults(tmp_path):
    write_config(
        tmp_path,
        {
            "build_dir": "public",
            "styles_output": "assets/css",
            "static": "source/**/*.txt",
            "renderer": "php-cgi",
            "output_style": "expanded",
            "port": 8080,
        },
    )

    config = BuildConfig.from_project(tmp_path)

    assert config.build_dir == tmp_path.resolve() / "public"
    assert config.styles_output_dir == tmp_path.resolve() / "public" / "assets" / "css"
    assert config.static_includes == ["source/**/*.txt"]
    assert config.static_excludes == []
    assert config.renderer_command == ["php-cgi"]
    assert config.output_style == "expanded"
    assert config.port == 8080


def test_overrides_win_and_none_is_ignored(tmp_path):
    write_config(tmp_path, {"port": 8080})
    config = BuildConfig.from_project(tmp_path, port=None, ws_port=4000)
    assert config.port == 8080
    assert config.ws_port == 4000


def test_load_config_does_not_mutate_defaults(tmp_path):
    write_config(tmp_path, {"port": 1234})
    raw = load_config(tmp_path)
    assert raw["port"] == 1234
    assert DEFAULT_CONFIG["port"] == 9001


def test_empty_config_file_uses_defaults(tmp_path):
    (tmp_path / "kiln.yaml").write_text("", encoding="utf-8")
    assert load_config(tmp_path) == DEFAULT_CONFIG


@pytest.mark.parametrize(
    "data, key",
    [
        ({"port": -1}, "port"),
        ({"render_jobs": "many"}, "render_jobs"),
        ({"output_style": "fancy"}, "output_style"),
        ({"renderer": []}, "renderer"),
        ({"static": [1, 2]}, "static"),
        ({"source_dir": ""}, "source_dir"),
    ],
)
def test_invalid_values_raise_config_error(tmp_path, data, key):
    write_config(tmp_path, data)
    with pytest.raises(ConfigError) as info:
        BuildConfig.from_project(tmp_path)
    assert info.value.key == key


def test_top_level_must_be_a_mapping(tmp_path):
    write_config(tmp_path, ["not", "a", "mapping"])
    with pytest.raises(ConfigError):
        load_config(tmp_path)
