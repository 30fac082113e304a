"""scan command: scan a commit and post findings to its pull requests."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from diffscan_core.errors import FatalRunError
from diffscan_core.gh.pull_request import get_prs_implicated, get_repo
from diffscan_core.git.repo import ensure_checkout
from diffscan_core.pipeline import prepare_scanners, scan_commit, submit_results
from diffscan_core.run import RunContext

console = Console()


def _print_run_report(run: RunContext) -> None:
    """Print counters, runtimes and collapsed alerts once, at the end of the run."""
    counters = run.counters.dump()
    if counters:
        table = Table(title="Counters", show_header=True)
        table.add_column("Counter")
        table.add_column("Value", justify="right")
        for name, value in sorted(counters.items()):
            table.add_row(name, str(value))
        console.print(table)

    runtimes = run.counters.runtimes()
    if runtimes:
        table = Table(title="Runtime", show_header=True)
        table.add_column("Bucket")
        table.add_column("Seconds", justify="right")
        for name, seconds in sorted(runtimes.items(), key=lambda item: item[1], reverse=True):
            table.add_row(name, f"{seconds:.2f}")
        console.print(table)

    for message in run.alerts.flush():
        console.print(f"[yellow]Alert:[/yellow] {message}")


@click.command("scan")
@click.option("--repo", required=True, help="GitHub repository in owner/name format.")
@click.option("--commit", "commit_sha", required=True, help="Commit to scan; must be checked out locally.")
@click.option(
    "--local-git-repo",
    "repo_path",
    required=True,
    type=click.Path(file_okay=False),
    help="Path to a git checkout of the repository at --commit.",
)
@click.option("--svg-checks/--no-svg-checks", default=None, help="Scan SVG files. Overrides config file.")
@click.option(
    "--shadow",
    "-s",
    is_flag=True,
    help="Dry-run mode: print findings without posting to GitHub.",
)
@click.pass_context
def scan_cmd(ctx, repo: str, commit_sha: str, repo_path: str, svg_checks: bool | None, shadow: bool):
    """Scan the files a commit's pull requests change and report new issues.

    Only findings on lines the pull request changed, and last modified by one
    of its own commits, are reported.

    \b
    Required environment variables:
      GITHUB_TOKEN         GitHub token (or use gh CLI)
      WPSCAN_API_TOKEN     WPScan API token, when wpscan_api is enabled
    """
    from diffscan_cli.auth import resolve_github_token
    from diffscan_core.config import load_config

    config_path = ctx.obj.get("config_path", ".diffscan.yml") if ctx.obj else ".diffscan.yml"
    config = load_config(config_path, cli_overrides={"svg_checks": svg_checks})

    token = resolve_github_token(config)
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.\n"
            "Create a token at https://github.com/settings/tokens"
        )
    config["github_token"] = token

    if config["svg_checks"] and not config.get("svg_scanner_path"):
        raise click.UsageError("svg_checks is enabled but svg_scanner_path is not set in the config file.")
    if config["wpscan_api"] and not config.get("wpscan_api_token"):
        raise click.UsageError("wpscan_api is enabled but WPSCAN_API_TOKEN is not set.")

    run = RunContext.from_config(config)
    try:
        ensure_checkout(run, repo_path, commit_sha)
        scanners = prepare_scanners(run, config)

        this_repo = get_repo(repo, token=token)
        prs = get_prs_implicated(this_repo, commit_sha, config["branches_ignore"], config["skip_draft_prs"])
        if not prs:
            console.print("[yellow]No open pull requests implicated by this commit.[/yellow]")
            return
        console.print(f"Scanning {commit_sha[:7]} for {len(prs)} pull request(s).")

        summary = scan_commit(run, repo_path, repo, prs, commit_sha, config, scanners=scanners)
        submit_results(run, summary, prs, config, shadow=shadow)
    except FatalRunError as e:
        console.print(f"[red]{e}[/red]")
        ctx.exit(e.exit_status)
    finally:
        _print_run_report(run)
