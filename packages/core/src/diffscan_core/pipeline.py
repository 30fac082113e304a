"""Scan a commit and work out which findings each implicated PR introduced."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from rich.console import Console

from diffscan_core.attribution import attribute_issues, collapse_duplicates
from diffscan_core.gh.pull_request import already_commented, get_pr_commit_shas, has_label
from diffscan_core.git.blame import blame_for_file
from diffscan_core.git.diff import fetch_diff
from diffscan_core.git.repo import fetch_tree, read_committed_file
from diffscan_core.models import AttributedIssue, DiffFilter, DiffStatus, Revision, file_extension
from diffscan_core.run import RunContext
from diffscan_core.scanners.base import BaseScanner, ScannerKind
from diffscan_core.scanners.phpcs import PhpcsScanner
from diffscan_core.scanners.svg import SvgScanner
from diffscan_core.scanners.wpscan import AddonReport, AddonType, WpscanClient, read_addon_header

console = Console()
logger = logging.getLogger(__name__)

AP_SVG_FILES = "ap-svg-files"
AP_FILE_TYPES = "autoapprove-filetypes"


@dataclass
class ScanSummary:
    """Everything scan_commit learned, ready for submit_results."""

    repo: str
    commit_sha: str
    # PR number -> accepted findings, in file order.
    issues: dict[int, list[AttributedIssue]] = field(default_factory=dict)
    # PR number -> {"error": n, "warning": n}
    stats: dict[int, dict[str, int]] = field(default_factory=dict)
    skipped_files: dict[int, list[str]] = field(default_factory=dict)
    failed_files: list[str] = field(default_factory=list)
    # Files over the line limit, commit-wide and per PR.
    oversized_files: list[str] = field(default_factory=list)
    large_files: dict[int, list[str]] = field(default_factory=dict)
    large_files_limit: int = 0
    skipped_prs: list[int] = field(default_factory=list)  # via skip label
    unavailable_prs: list[int] = field(default_factory=list)  # diff could not be computed
    auto_approved_files: dict[str, str] = field(default_factory=dict)
    auto_approved_prs: list[int] = field(default_factory=list)
    invalid_sniffs: list[str] = field(default_factory=list)
    addon_reports: dict[int, list[AddonReport]] = field(default_factory=dict)


def scanner_kind_for(file_name: str, svg_checks: bool) -> ScannerKind:
    if svg_checks and file_name.lower().endswith(".svg"):
        return ScannerKind.SVG
    return ScannerKind.PHPCS


def build_scanner(kind: ScannerKind, ctx: RunContext, config: dict) -> BaseScanner | WpscanClient:
    if kind is ScannerKind.WPSCAN:
        if not config.get("wpscan_api_token"):
            raise ValueError("wpscan_api is enabled but WPSCAN_API_TOKEN is not set.")
        return WpscanClient(ctx, api_token=config["wpscan_api_token"], api_url=config["wpscan_api_url"])
    if kind is ScannerKind.PHPCS:
        return PhpcsScanner(
            ctx,
            phpcs_path=config["phpcs_path"],
            php_path=config["phpcs_php_path"],
            standard=config["phpcs_standard"],
            severity=config["phpcs_severity"],
            sniffs_exclude=config["phpcs_sniffs_exclude"],
            runtime_set=config["phpcs_runtime_set"],
        )
    if kind is ScannerKind.SVG:
        if not config.get("svg_scanner_path"):
            raise ValueError("svg_checks is enabled but svg_scanner_path is not configured.")
        return SvgScanner(ctx, scanner_path=config["svg_scanner_path"], php_path=config["phpcs_php_path"])
    raise ValueError(f"Unknown scanner kind: {kind!r}")


def prepare_scanners(ctx: RunContext, config: dict) -> dict[ScannerKind, BaseScanner | WpscanClient]:
    """Build the configured scanners and check PHPCS before any scanning starts.

    Raises ScannerUnavailableError when PHPCS cannot run or a configured
    standard is not installed. Excluded sniffs the standard does not know are
    dropped and kept on the scanner as ``invalid_sniffs``.
    """
    phpcs = build_scanner(ScannerKind.PHPCS, ctx, config)
    console.print(f"Using PHPCS {phpcs.version() or '(unknown version)'}")
    phpcs.validate_standards()
    invalid = phpcs.validate_sniffs()
    if invalid:
        console.print(f"[yellow]Ignoring unknown excluded sniff(s): {', '.join(invalid)}[/yellow]")

    scanners: dict[ScannerKind, BaseScanner | WpscanClient] = {ScannerKind.PHPCS: phpcs}
    if config["svg_checks"]:
        scanners[ScannerKind.SVG] = build_scanner(ScannerKind.SVG, ctx, config)
    if config["wpscan_api"]:
        scanners[ScannerKind.WPSCAN] = build_scanner(ScannerKind.WPSCAN, ctx, config)
    return scanners


def _count_lines(content: bytes) -> int:
    return content.count(b"\n") + (1 if content and not content.endswith(b"\n") else 0)


def _scan_filter(config: dict) -> DiffFilter:
    extensions = list(config["file_extensions"])
    if config["svg_checks"]:
        extensions.append("svg")
    return DiffFilter.build(file_extensions=extensions, skip_folders=config["phpcs_skip_folders"])


def _scan_files(
    ctx: RunContext,
    repo_path: str,
    commit_sha: str,
    file_names: list[str],
    config: dict,
    scanners: dict[ScannerKind, BaseScanner],
    summary: ScanSummary,
) -> dict[str, list]:
    """Scan every file once, however many PRs it belongs to."""
    results: dict[str, list] = {}
    total = len(file_names)
    for i, file_name in enumerate(file_names, 1):
        console.print(f"[[{i}/{total}]] Scanning: {file_name}")
        kind = scanner_kind_for(file_name, config["svg_checks"])
        if kind not in scanners:
            scanners[kind] = build_scanner(kind, ctx, config)

        content = read_committed_file(ctx, repo_path, commit_sha, file_name)
        if content is not None and config["skip_large_files"]:
            line_count = _count_lines(content)
            if line_count > config["skip_large_files_limit"]:
                console.print(f"  [yellow]Skipping {file_name}: {line_count} lines is over the limit.[/yellow]")
                logger.info("Skipping large file %s (%d lines)", file_name, line_count)
                ctx.counters.increment("files_too_large")
                summary.oversized_files.append(file_name)
                continue

        issues = scanners[kind].scan(file_name, content) if content is not None else None
        if issues is None:
            console.print(f"  [red]Could not scan {file_name}[/red]")
            ctx.alerts.add(f"Failed {kind.value} scanning of {file_name}")
            summary.failed_files.append(file_name)
            continue
        results[file_name] = issues
        console.print(f"  {len(issues)} finding(s) in file.")
    return results


def scan_commit(
    ctx: RunContext,
    repo_path: str,
    repo_name: str,
    prs: list,
    commit_sha: str,
    config: dict,
    scanners: dict[ScannerKind, BaseScanner] | None = None,
) -> ScanSummary:
    """Scan the files changed by ``prs`` at ``commit_sha`` and attribute findings.

    ``prs`` are the open pull requests implicated by the commit (PyGithub
    PullRequest objects). Scanners are built lazily from ``config`` unless
    supplied.
    """
    scanners = dict(scanners or {})
    summary = ScanSummary(repo=repo_name, commit_sha=commit_sha, large_files_limit=config["skip_large_files_limit"])
    head = Revision(commit_sha, repo_name)
    phpcs = scanners.get(ScannerKind.PHPCS)
    if isinstance(phpcs, PhpcsScanner):
        summary.invalid_sniffs = list(phpcs.invalid_sniffs)
    diff_filter = _scan_filter(config)

    with ctx.counters.measure("scan_commit"):
        pr_files = {}
        all_files: list[str] = []
        for pr in prs:
            files = fetch_diff(ctx, repo_path, Revision(pr.base.sha, repo_name), head, diff_filter)
            if files is None:
                console.print(f"[yellow]PR #{pr.number}: diff unavailable, not scanning it.[/yellow]")
                summary.unavailable_prs.append(pr.number)
                continue
            pr_files[pr.number] = files
            for file_name in files:
                if file_name not in all_files:
                    all_files.append(file_name)

        with ctx.counters.measure("scan_files"):
            file_issues = _scan_files(ctx, repo_path, commit_sha, all_files, config, scanners, summary)

        for pr in prs:
            if pr.number not in pr_files:
                continue
            if config["skip_scanning_via_labels_allowed"] and has_label(pr, config["skip_label"]):
                console.print(f"[yellow]PR #{pr.number}: '{config['skip_label']}' label set, skipping.[/yellow]")
                summary.skipped_prs.append(pr.number)
                continue
            _attribute_pr(ctx, repo_path, head, pr, pr_files[pr.number], file_issues, summary)

        if config["wpscan_api"]:
            if ScannerKind.WPSCAN not in scanners:
                scanners[ScannerKind.WPSCAN] = build_scanner(ScannerKind.WPSCAN, ctx, config)
            prs_to_check = [pr for pr in prs if pr.number in pr_files and pr.number not in summary.skipped_prs]
            summary.addon_reports.update(
                scan_addons(ctx, repo_path, repo_name, prs_to_check, commit_sha, config, scanners[ScannerKind.WPSCAN])
            )

    if config["autoapprove"]:
        _find_auto_approvals(ctx, repo_path, prs, head, config, scanners, summary)

    return summary


def _attribute_pr(ctx, repo_path, head, pr, files, file_issues, summary: ScanSummary) -> None:
    pr_commits = get_pr_commit_shas(pr)
    accepted: list[AttributedIssue] = []
    stats = {"error": 0, "warning": 0}

    for file_name, record in files.items():
        if file_name in summary.oversized_files:
            summary.large_files.setdefault(pr.number, []).append(file_name)
            continue
        if file_name not in file_issues:
            # _scan_files already alerted on the failure.
            ctx.mark_skipped(pr.number, file_name, "scanning failed", alert=False)
            continue
        if not file_issues[file_name]:
            continue

        blame = blame_for_file(ctx, repo_path, head, file_name)
        attributed = attribute_issues(file_name, file_issues[file_name], record.changed_lines, blame, pr_commits)
        if attributed is None:
            ctx.mark_skipped(pr.number, file_name, "diff or blame unavailable")
            continue
        accepted.extend(attributed)

    accepted = collapse_duplicates(accepted)
    for item in accepted:
        stats[item.issue.level] = stats.get(item.issue.level, 0) + 1
        ctx.counters.increment(f"issues_{item.issue.level}")

    summary.issues[pr.number] = accepted
    summary.stats[pr.number] = stats
    if pr.number in ctx.skipped_files:
        summary.skipped_files[pr.number] = list(ctx.skipped_files[pr.number])
    logger.info("PR #%d: %d finding(s) attributed", pr.number, len(accepted))


def _addon_dir(file_name: str, config: dict) -> tuple[AddonType, str] | None:
    """Return the plugin or theme directory ``file_name`` lives in, if any."""
    roots = [(AddonType.PLUGIN, r) for r in config["wpscan_api_plugin_paths"]]
    roots += [(AddonType.THEME, r) for r in config["wpscan_api_theme_paths"]]
    for addon_type, root in roots:
        prefix = root.strip("/") + "/"
        rest = file_name[len(prefix) :] if file_name.startswith(prefix) else ""
        if "/" in rest:
            return addon_type, prefix + rest.split("/", 1)[0]
    return None


def _addon_version(
    ctx: RunContext, repo_path: str, commit_sha: str, addon_type: AddonType, addon_dir: str
) -> str | None:
    """Find the version declared in the plugin's main file or the theme's style.css."""
    if addon_type is AddonType.THEME:
        candidates, name_field = [f"{addon_dir}/style.css"], "Theme Name"
    else:
        tree = fetch_tree(ctx, repo_path, commit_sha, DiffFilter.build(file_extensions=["php"]))
        candidates = [f for f in tree if f.startswith(addon_dir + "/") and "/" not in f[len(addon_dir) + 1 :]]
        name_field = "Plugin Name"

    for file_name in candidates:
        content = read_committed_file(ctx, repo_path, commit_sha, file_name)
        if content is not None and read_addon_header(content, name_field):
            return read_addon_header(content, "Version")
    return None


def scan_addons(
    ctx: RunContext,
    repo_path: str,
    repo_name: str,
    prs: list,
    commit_sha: str,
    config: dict,
    client: WpscanClient,
) -> dict[int, list[AddonReport]]:
    """Look up every plugin and theme touched by ``prs`` in the WPScan API.

    Returns, per PR, the add-ons that still have known vulnerabilities at
    their committed version. Add-ons without a readable version are skipped.
    """
    head = Revision(commit_sha, repo_name)
    everything = DiffFilter.build(include_renamed=True)
    reports: dict[str, AddonReport | None] = {}
    by_pr: dict[int, list[AddonReport]] = {}

    with ctx.counters.measure("wpscan_scan"):
        for pr in prs:
            files = fetch_diff(ctx, repo_path, Revision(pr.base.sha, repo_name), head, everything) or {}
            addon_dirs = []
            for file_name in files:
                found = _addon_dir(file_name, config)
                if found and found not in addon_dirs:
                    addon_dirs.append(found)

            for addon_type, addon_dir in addon_dirs:
                if addon_dir not in reports:
                    version = _addon_version(ctx, repo_path, commit_sha, addon_type, addon_dir)
                    slug = addon_dir.rsplit("/", 1)[-1]
                    if version is None:
                        logger.info("No %s version header found in %s, not looking it up", addon_type.value, addon_dir)
                        reports[addon_dir] = None
                    else:
                        reports[addon_dir] = client.scan_addon(slug, addon_type, version, addon_dir)
                report = reports[addon_dir]
                if report is not None and report.vulnerabilities:
                    by_pr.setdefault(pr.number, []).append(report)
    return by_pr


def auto_approve_svg_files(
    ctx: RunContext,
    repo_path: str,
    repo_name: str,
    prs: list,
    commit_sha: str,
    scanner: BaseScanner,
) -> dict[str, str]:
    """Return the SVG files in ``prs`` that are safe to approve without review.

    A file qualifies when the PR only renamed, removed or re-permissioned it,
    or when the SVG scanner finds nothing in it.
    """
    approved: dict[str, str] = {}
    head = Revision(commit_sha, repo_name)
    svg_filter = DiffFilter.build(
        file_extensions=["svg"], include_renamed=True, include_removed=True, include_permission_changes=True
    )

    with ctx.counters.measure("ap_svg_files"):
        for pr in prs:
            files = fetch_diff(ctx, repo_path, Revision(pr.base.sha, repo_name), head, svg_filter)
            for file_name, record in (files or {}).items():
                if file_name in approved:
                    continue
                if record.status is DiffStatus.REMOVED or not record.changed_lines:
                    logger.info("Approving %s: no material change (%s)", file_name, record.status.value)
                    approved[file_name] = AP_SVG_FILES
                    continue

                content = read_committed_file(ctx, repo_path, commit_sha, file_name)
                issues = scanner.scan(file_name, content) if content is not None else None
                if issues is None:
                    ctx.alerts.add(f"Not auto-approving {file_name}: SVG scanning failed")
                elif not issues:
                    approved[file_name] = AP_SVG_FILES
                else:
                    logger.info("Not approving %s: %d SVG issue(s)", file_name, len(issues))
    return approved


def _find_auto_approvals(ctx, repo_path, prs, head, config, scanners, summary: ScanSummary) -> None:
    """Fill summary.auto_approved_* for PRs whose every change is approvable."""
    if config["svg_checks"]:
        if ScannerKind.SVG not in scanners:
            scanners[ScannerKind.SVG] = build_scanner(ScannerKind.SVG, ctx, config)
        summary.auto_approved_files.update(
            auto_approve_svg_files(ctx, repo_path, head.repo, prs, head.sha, scanners[ScannerKind.SVG])
        )

    filetypes = {t.lower().lstrip(".") for t in config["autoapprove_filetypes"]}
    everything = DiffFilter.build(include_renamed=True, include_removed=True, include_permission_changes=True)
    for pr in prs:
        if pr.number in summary.skipped_prs or pr.number in summary.unavailable_prs:
            continue
        files = fetch_diff(ctx, repo_path, Revision(pr.base.sha, head.repo), head, everything)
        if not files or summary.issues.get(pr.number) or summary.skipped_files.get(pr.number):
            continue
        if summary.large_files.get(pr.number) or summary.addon_reports.get(pr.number):
            continue
        for file_name in files:
            if file_name not in summary.auto_approved_files and file_extension(file_name) in filetypes:
                summary.auto_approved_files[file_name] = AP_FILE_TYPES
        if all(f in summary.auto_approved_files for f in files):
            summary.auto_approved_prs.append(pr.number)


# --------------------------------------------------------------------------- #
# Submission                                                                  #
# --------------------------------------------------------------------------- #


def format_comment_body(item: AttributedIssue) -> str:
    issue = item.issue
    return f"**[{issue.level.upper()}]**\n\n{issue.message}\n\n_{issue.tool}: `{issue.rule}`_"


def _determine_event(issues: list[AttributedIssue]) -> str:
    """Choose the GitHub review event based on the worst finding."""
    if any(item.issue.level == "error" for item in issues):
        return "REQUEST_CHANGES"
    return "COMMENT"


def _build_summary(commit_sha: str, stats: dict[str, int], skipped: list[str]) -> str:
    """Build the top-level review body posted with the inline comments."""
    errors = stats.get("error", 0)
    warnings = stats.get("warning", 0)
    lines = ["## Scan results\n", f"_Commit `{commit_sha[:7]}`_\n"]
    if errors or warnings:
        lines.append(f"> **{errors}** error(s), **{warnings}** warning(s) introduced by this pull request.\n")
    else:
        lines.append("> No new issues found.\n")
    if skipped:
        lines.append(f"**{len(skipped)}** file(s) could not be checked; see the separate comment.")
    return "\n".join(lines)


def _build_skipped_body(skipped: list[str]) -> str:
    listed = "\n".join(f"- `{f}`" for f in skipped)
    return (
        "The following file(s) could not be scanned or attributed and were skipped. "
        "Please review them manually:\n\n" + listed
    )


def _build_large_files_body(large: list[str], limit: int) -> str:
    listed = "\n".join(f"- `{f}`" for f in large)
    return (
        f"The following file(s) have more than {limit} lines and were not scanned. "
        "Please review them manually:\n\n" + listed
    )


def _build_invalid_sniffs_body(invalid: list[str]) -> str:
    listed = "\n".join(f"- `{s}`" for s in invalid)
    return (
        "The following sniff(s) are excluded in the scan configuration but are not part of the "
        "configured PHPCS standard. They were ignored for this scan:\n\n" + listed
    )


def _build_addon_body(reports: list[AddonReport]) -> str:
    lines = ["## Known vulnerabilities\n"]
    for report in reports:
        label = report.addon_type.value.title()
        lines.append(f"**{label} `{report.slug}`** version {report.version} (`{report.path}`):\n")
        for vuln in report.vulnerabilities:
            kind = f" [{vuln.vuln_type}]" if vuln.vuln_type else ""
            lines.append(f"- {vuln.title}{kind}, fixed in {vuln.fixed_in}")
        lines.append("")
    lines.append("Data from the WPScan API.")
    return "\n".join(lines)


def print_shadow_comments(summary: ScanSummary) -> None:
    """Print findings to the terminal without posting to GitHub."""
    _level_color = {"error": "red", "warning": "yellow"}
    for pr_number, issues in summary.issues.items():
        console.print(f"\n[bold]PR #{pr_number}: {len(issues)} finding(s) (not posted)[/bold]\n")
        for item in issues:
            color = _level_color.get(item.issue.level, "white")
            console.print(
                f"[bold cyan]{item.file_name}[/bold cyan]  line [bold]{item.issue.line}[/bold]  "
                f"position {item.position}  [{color}]{item.issue.level.upper()}[/{color}]"
            )
            console.print(f"  {item.issue.message} [dim]({item.issue.rule})[/dim]")
        for file_name in summary.skipped_files.get(pr_number, []):
            console.print(f"  [yellow]Skipped: {file_name}[/yellow]")
        for file_name in summary.large_files.get(pr_number, []):
            console.print(f"  [yellow]Too large to scan: {file_name}[/yellow]")
        for report in summary.addon_reports.get(pr_number, []):
            console.print(
                f"  [red]{report.addon_type.value} {report.slug} {report.version}: "
                f"{len(report.vulnerabilities)} known vulnerabilities[/red]"
            )
    if summary.invalid_sniffs:
        console.print(f"[yellow]Invalid excluded sniffs: {', '.join(summary.invalid_sniffs)}[/yellow]")


def submit_results(
    ctx: RunContext,
    summary: ScanSummary,
    prs: list,
    config: dict,
    shadow: bool = False,
) -> None:
    """Post attributed findings, per-PR notices and auto-approvals."""
    if shadow:
        print_shadow_comments(summary)
        return

    batch_limit = config["batch_limit"]
    for pr in prs:
        if pr.number not in summary.issues:
            continue
        issues = summary.issues[pr.number]
        skipped = summary.skipped_files.get(pr.number, [])
        large = summary.large_files.get(pr.number, [])

        existing_comments = list(pr.get_review_comments())
        queued: set[tuple] = set()
        comments = []
        for item in issues:
            body = format_comment_body(item)
            if already_commented(existing_comments, item.file_name, item.position, body, queued):
                logger.debug("Skipping duplicate comment on %s position %d", item.file_name, item.position)
                continue
            comments.append({"path": item.file_name, "position": item.position, "body": body})
            queued.add((item.file_name, item.position, body.strip()))

        if comments:
            event = _determine_event(issues)
            summary_body = _build_summary(summary.commit_sha, summary.stats.get(pr.number, {}), skipped + large)
            batches = [comments[i : i + batch_limit] for i in range(0, len(comments), batch_limit)]
            posted = 0
            for idx, batch in enumerate(batches):
                is_last = idx == len(batches) - 1
                body = summary_body if is_last else f"Scan results ({posted + len(batch)}/{len(comments)} comments)..."
                pr.create_review(body=body, event=event if is_last else "COMMENT", comments=batch)
                posted += len(batch)
            ctx.counters.increment("github_comments_posted", posted)
            console.print(f"[green]PR #{pr.number}: posted {posted} comment(s) as {event}.[/green]")

        if skipped:
            pr.create_issue_comment(_build_skipped_body(skipped))
        if large:
            pr.create_issue_comment(_build_large_files_body(large, summary.large_files_limit))
        if summary.addon_reports.get(pr.number):
            pr.create_issue_comment(_build_addon_body(summary.addon_reports[pr.number]))
        if summary.invalid_sniffs:
            pr.create_issue_comment(_build_invalid_sniffs_body(summary.invalid_sniffs))

        if pr.number in summary.auto_approved_prs:
            pr.create_review(body="Auto-approved: every changed file is approvable.", event="APPROVE")
            pr.add_to_labels(config["autoapprove_label"])
            ctx.counters.increment("prs_auto_approved")
            console.print(f"[green]PR #{pr.number}: auto-approved.[/green]")
