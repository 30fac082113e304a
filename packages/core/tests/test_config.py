"""Tests for configuration loading."""

import pytest

from diffscan_core.config import DEFAULT_CONFIG, load_config


@pytest.fixture(autouse=True)
def _no_token(monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("WPSCAN_API_TOKEN", raising=False)


def test_defaults_applied_when_no_config_file(tmp_path):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    assert config["phpcs_standard"] == ["WordPress"]
    assert config["phpcs_severity"] == 1
    assert config["file_extensions"] == ["php", "js", "twig"]
    assert config["batch_limit"] == 60
    assert config["svg_checks"] is False
    assert config["skip_label"] == "skip-phpcs-scan"
    assert config["env_options"] == {}


def test_defaults_are_not_shared_between_loads(tmp_path):
    config = load_config(config_path=str(tmp_path / "nonexistent.yml"))
    config["phpcs_standard"].append("PHPCompatibility")
    assert DEFAULT_CONFIG["phpcs_standard"] == ["WordPress"]


def test_config_file_overrides_defaults(tmp_path):
    cfg = tmp_path / ".diffscan.yml"
    cfg.write_text("phpcs_standard:\n  - WordPress-VIP-Go\nbatch_limit: 30\nbranches_ignore: [release]\n")
    config = load_config(config_path=str(cfg))
    assert config["phpcs_standard"] == ["WordPress-VIP-Go"]
    assert config["batch_limit"] == 30
    assert config["branches_ignore"] == ["release"]


def test_comma_separated_lists_are_split(tmp_path):
    cfg = tmp_path / ".diffscan.yml"
    cfg.write_text("file_extensions: 'php, inc ,'\nphpcs_skip_folders: vendor,node_modules\n")
    config = load_config(config_path=str(cfg))
    assert config["file_extensions"] == ["php", "inc"]
    assert config["phpcs_skip_folders"] == ["vendor", "node_modules"]


def test_empty_config_file(tmp_path):
    cfg = tmp_path / ".diffscan.yml"
    cfg.write_text("")
    assert load_config(config_path=str(cfg))["batch_limit"] == 60


def test_cli_overrides_config_file(tmp_path):
    cfg = tmp_path / ".diffscan.yml"
    cfg.write_text("svg_checks: false\nphpcs_severity: 5\n")
    config = load_config(config_path=str(cfg), cli_overrides={"svg_checks": True, "phpcs_severity": None})
    assert config["svg_checks"] is True
    assert config["phpcs_severity"] == 5


class TestEnvOptions:
    def test_reads_named_variables(self, tmp_path, monkeypatch):
        cfg = tmp_path / ".diffscan.yml"
        cfg.write_text("env_options:\n  phpcs_severity: PHPCS_SEVERITY\n  autoapprove: AUTOAPPROVE\n")
        monkeypatch.setenv("PHPCS_SEVERITY", "3")
        monkeypatch.setenv("AUTOAPPROVE", "true")
        config = load_config(config_path=str(cfg))
        assert config["phpcs_severity"] == 3
        assert config["autoapprove"] is True

    def test_string_form(self, tmp_path, monkeypatch):
        cfg = tmp_path / ".diffscan.yml"
        cfg.write_text("env_options: 'autoapprove_filetypes=AP_TYPES,skip_draft_prs=SKIP_DRAFTS'\n")
        monkeypatch.setenv("AP_TYPES", "txt,gif,png")
        monkeypatch.setenv("SKIP_DRAFTS", "no")
        config = load_config(config_path=str(cfg))
        assert config["autoapprove_filetypes"] == ["txt", "gif", "png"]
        assert config["skip_draft_prs"] is False

    def test_unset_variable_keeps_file_value(self, tmp_path, monkeypatch):
        cfg = tmp_path / ".diffscan.yml"
        cfg.write_text("batch_limit: 10\nenv_options:\n  batch_limit: DIFFSCAN_BATCH\n")
        monkeypatch.delenv("DIFFSCAN_BATCH", raising=False)
        assert load_config(config_path=str(cfg))["batch_limit"] == 10

    def test_unknown_option_is_ignored(self, tmp_path, monkeypatch):
        cfg = tmp_path / ".diffscan.yml"
        cfg.write_text("env_options:\n  no_such_option: SOME_VAR\n")
        monkeypatch.setenv("SOME_VAR", "1")
        assert "no_such_option" not in load_config(config_path=str(cfg))

    def test_cli_beats_environment(self, tmp_path, monkeypatch):
        cfg = tmp_path / ".diffscan.yml"
        cfg.write_text("env_options:\n  svg_checks: SVG\n")
        monkeypatch.setenv("SVG", "true")
        assert load_config(config_path=str(cfg), cli_overrides={"svg_checks": False})["svg_checks"] is False


def test_github_token_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_test")
    assert load_config(config_path=str(tmp_path / "none.yml"))["github_token"] == "ghp_test"


def test_large_file_and_wpscan_defaults(tmp_path):
    config = load_config(config_path=str(tmp_path / "none.yml"))
    assert config["skip_large_files"] is True
    assert config["skip_large_files_limit"] == 15000
    assert config["wpscan_api"] is False
    assert config["wpscan_api_plugin_paths"] == ["plugins"]
    assert config["wpscan_api_token"] is None


def test_wpscan_options_from_file_and_environment(tmp_path, monkeypatch):
    cfg = tmp_path / ".diffscan.yml"
    cfg.write_text(
        "wpscan_api: 'true'\nwpscan_api_theme_paths: wp-content/themes,themes\nskip_large_files_limit: '500'\n"
    )
    monkeypatch.setenv("WPSCAN_API_TOKEN", "wp_test")
    config = load_config(config_path=str(cfg))
    assert config["wpscan_api"] is True
    assert config["wpscan_api_theme_paths"] == ["wp-content/themes", "themes"]
    assert config["skip_large_files_limit"] == 500
    assert config["wpscan_api_token"] == "wp_test"
