"""Tests for the CLI entry point."""

from unittest.mock import MagicMock

from click.testing import CliRunner

from diffscan_cli.cli import main
from diffscan_core.config import DEFAULT_CONFIG
from diffscan_core.errors import CheckoutMismatchError, ScannerUnavailableError
from diffscan_core.pipeline import ScanSummary, prepare_scanners

SHA = "a" * 40
ARGS = ["scan", "--repo", "owner/repo", "--commit", SHA, "--local-git-repo", "/tmp/repo"]


def _make_config(**overrides):
    return {**DEFAULT_CONFIG, "github_token": "tok", **overrides}


def _patch_common(mocker, config=None, token="tok", prs=None):
    """Patch config, auth and every GitHub/git touchpoint of the scan command."""
    cfg = config or _make_config()
    mocker.patch("diffscan_core.config.load_config", return_value=cfg)
    mocker.patch("diffscan_cli.auth.resolve_github_token", return_value=token)
    pr = MagicMock()
    pr.number = 7
    mocks = {
        "ensure_checkout": mocker.patch("diffscan_cli.commands.scan.ensure_checkout"),
        "prepare_scanners": mocker.patch("diffscan_cli.commands.scan.prepare_scanners", return_value={}),
        "get_repo": mocker.patch("diffscan_cli.commands.scan.get_repo"),
        "get_prs_implicated": mocker.patch(
            "diffscan_cli.commands.scan.get_prs_implicated", return_value=[pr] if prs is None else prs
        ),
        "scan_commit": mocker.patch(
            "diffscan_cli.commands.scan.scan_commit",
            return_value=ScanSummary(repo="owner/repo", commit_sha=SHA),
        ),
        "submit_results": mocker.patch("diffscan_cli.commands.scan.submit_results"),
    }
    return cfg, mocks


class TestCLIValidation:
    def test_missing_github_token(self, mocker):
        _, mocks = _patch_common(mocker, token=None)

        result = CliRunner().invoke(main, ARGS)
        assert result.exit_code != 0
        assert "token" in result.output.lower() or "GITHUB_TOKEN" in result.output
        mocks["scan_commit"].assert_not_called()

    def test_svg_checks_without_scanner_path(self, mocker):
        _, mocks = _patch_common(mocker, config=_make_config(svg_checks=True, svg_scanner_path=None))

        result = CliRunner().invoke(main, ARGS)
        assert result.exit_code != 0
        assert "svg_scanner_path" in result.output
        mocks["ensure_checkout"].assert_not_called()

    def test_wpscan_without_token(self, mocker):
        _, mocks = _patch_common(mocker, config=_make_config(wpscan_api=True, wpscan_api_token=None))

        result = CliRunner().invoke(main, ARGS)
        assert result.exit_code != 0
        assert "WPSCAN_API_TOKEN" in result.output
        mocks["ensure_checkout"].assert_not_called()

    def test_required_options(self, mocker):
        _patch_common(mocker)
        result = CliRunner().invoke(main, ["scan", "--repo", "owner/repo"])
        assert result.exit_code == 2
        assert "--commit" in result.output


class TestScanCommand:
    def test_scans_and_submits(self, mocker):
        cfg, mocks = _patch_common(mocker)

        result = CliRunner().invoke(main, ARGS)
        assert result.exit_code == 0, result.output
        mocks["ensure_checkout"].assert_called_once()
        assert mocks["ensure_checkout"].call_args.args[1:] == ("/tmp/repo", SHA)
        mocks["get_repo"].assert_called_once_with("owner/repo", token="tok")
        scan_args = mocks["scan_commit"].call_args.args
        assert scan_args[1:3] == ("/tmp/repo", "owner/repo")
        assert scan_args[4] == SHA
        assert mocks["submit_results"].call_args.kwargs["shadow"] is False
        assert mocks["scan_commit"].call_args.kwargs["scanners"] is mocks["prepare_scanners"].return_value

    def test_shadow_flag(self, mocker):
        _, mocks = _patch_common(mocker)

        result = CliRunner().invoke(main, ARGS + ["--shadow"])
        assert result.exit_code == 0, result.output
        assert mocks["submit_results"].call_args.kwargs["shadow"] is True

    def test_svg_checks_flag_is_a_config_override(self, mocker):
        _patch_common(mocker)
        load = mocker.patch("diffscan_core.config.load_config", return_value=_make_config())

        CliRunner().invoke(main, ARGS + ["--no-svg-checks"])
        assert load.call_args.kwargs["cli_overrides"] == {"svg_checks": False}

    def test_config_path_option(self, mocker):
        _patch_common(mocker)
        load = mocker.patch("diffscan_core.config.load_config", return_value=_make_config())

        CliRunner().invoke(main, ["--config", "custom.yml"] + ARGS)
        assert load.call_args.args[0] == "custom.yml"

    def test_no_implicated_prs(self, mocker):
        _, mocks = _patch_common(mocker, prs=[])

        result = CliRunner().invoke(main, ARGS)
        assert result.exit_code == 0
        assert "No open pull requests" in result.output
        mocks["scan_commit"].assert_not_called()

    def test_checkout_mismatch_exits_253(self, mocker):
        _, mocks = _patch_common(mocker)
        mocks["ensure_checkout"].side_effect = CheckoutMismatchError("/tmp/repo", SHA, "b" * 40)

        result = CliRunner().invoke(main, ARGS)
        assert result.exit_code == 253
        assert "not checked out" in result.output
        mocks["get_repo"].assert_not_called()

    def test_scanner_unavailable_exits_250(self, mocker):
        _, mocks = _patch_common(mocker)
        mocks["scan_commit"].side_effect = ScannerUnavailableError("Unable to run PHPCS")

        result = CliRunner().invoke(main, ARGS)
        assert result.exit_code == 250
        mocks["submit_results"].assert_not_called()

    def test_run_report_printed(self, mocker):
        _, mocks = _patch_common(mocker)

        def fake_scan(run, *args, **kwargs):
            run.counters.increment("phpcs_files_scanned", 3)
            run.alerts.add("Failed phpcs scanning of a.php")
            return ScanSummary(repo="owner/repo", commit_sha=SHA)

        mocks["scan_commit"].side_effect = fake_scan

        result = CliRunner().invoke(main, ARGS)
        assert "phpcs_files_scanned" in result.output
        assert "Failed phpcs scanning of a.php" in result.output

    def test_missing_phpcs_fails_before_github_calls(self, mocker):
        _, mocks = _patch_common(mocker)
        mocker.patch("diffscan_cli.commands.scan.prepare_scanners", side_effect=prepare_scanners)
        mocker.patch("diffscan_core.utils.process.subprocess.run", side_effect=FileNotFoundError("php"))

        result = CliRunner().invoke(main, ARGS)
        assert result.exit_code == 250
        assert "Unable to run PHPCS" in result.output
        mocks["get_repo"].assert_not_called()
        mocks["scan_commit"].assert_not_called()
