"""glreview - bulk GitLab merge request tooling and AI code review.

Usage:
    glreview analyze <project> [options]
    glreview review-repo group/project --focus security --depth deep
    glreview review-mr group/project 42 --post
    glreview bulk-mr 12 34 56 --source feature/x --target main --title "Ship x"
"""

from __future__ import annotations

import asyncio
import json
import sys
from contextlib import nullcontext
from typing import Any, Coroutine, TypeVar

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .analyzer import AnalysisResult, ProgressEvent, RepositoryAnalyzer
from .branches import common_branches, create_merge_requests, fetch_branches, is_branch_valid
from .config import DEFAULT_GITLAB_URL, DEPTHS, FOCUS_AREAS, AnalysisOptions
from .gitlab import (
    AuthError,
    GitLabClient,
    GitLabError,
    GitLabSession,
    OperationCancelled,
    RateLimitError,
)
from .logging import configure_logging
from .model import DEFAULT_MODEL, GeminiClient, ModelError
from .parser import ReviewResult
from .reviewer import CodeReviewer

console = Console()

T = TypeVar("T")


def _client(session: GitLabSession) -> GitLabClient:
    return GitLabClient(session)


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine and turn domain errors into clean CLI failures."""
    try:
        return asyncio.run(coro)
    except AuthError as e:
        raise click.ClickException(f"Authentication failed: {e}. Check --token or GITLAB_TOKEN.")
    except RateLimitError as e:
        hint = f" Resets at {e.reset_time:%H:%M:%S} UTC." if e.reset_time else ""
        raise click.ClickException(f"{e}.{hint}")
    except (GitLabError, ModelError, OperationCancelled) as e:
        raise click.ClickException(str(e))


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _progress(json_only: bool) -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        console=Console(quiet=True) if json_only else console,
    )


def _analysis_options(max_files: int, include_docs: bool, no_config: bool, ext: tuple, exclude: tuple) -> AnalysisOptions:
    return AnalysisOptions(
        max_files=max_files,
        include_docs=include_docs,
        include_config=not no_config,
        custom_extensions=[e if e.startswith(".") else f".{e}" for e in ext],
        custom_exclusions=list(exclude),
    )


async def _run_analysis(
    client: GitLabClient, project: str, ref: str, options: AnalysisOptions, json_only: bool
) -> AnalysisResult:
    analyzer = RepositoryAnalyzer(client, options)
    with _progress(json_only) as progress:
        task = progress.add_task("Starting analysis...", total=100)

        def on_progress(event: ProgressEvent) -> None:
            progress.update(task, description=event.message)
            if event.progress is not None:
                progress.update(task, completed=event.progress)

        return await analyzer.analyze(project, ref, progress_callback=on_progress)


def _analysis_options_decorators(func):
    func = click.option("--ext", multiple=True, help="Extra file extension to include (repeatable)")(func)
    func = click.option("--exclude", multiple=True, help="Path substring to exclude (repeatable)")(func)
    func = click.option("--no-config", is_flag=True, help="Skip configuration files")(func)
    func = click.option("--include-docs", is_flag=True, help="Include documentation files")(func)
    func = click.option("--max-files", default=100, show_default=True, help="Maximum files to fetch")(func)
    func = click.option("--ref", "-r", default="main", show_default=True, help="Branch, tag or commit")(func)
    return func


@click.group()
@click.version_option(version=__version__)
@click.option("--gitlab-url", envvar="GITLAB_URL", default=DEFAULT_GITLAB_URL, show_default=True, help="GitLab instance URL")
@click.option("--token", envvar="GITLAB_TOKEN", default=None, help="Personal access token (or GITLAB_TOKEN)")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx: click.Context, gitlab_url: str, token: str | None, verbose: bool):
    """glreview - bulk GitLab merge requests and AI code review.

    Analyze repositories, review merge requests with Gemini, and open the
    same merge request across many projects at once.
    """
    configure_logging(verbose=verbose)
    ctx.obj = GitLabSession(url=gitlab_url, token=token)


@cli.command()
@click.argument("project")
@_analysis_options_decorators
@click.option("--json-only", is_flag=True, help="Output raw JSON to stdout (for piping)")
@click.pass_obj
def analyze(session: GitLabSession, project: str, ref: str, max_files: int, include_docs: bool,
            no_config: bool, ext: tuple, exclude: tuple, json_only: bool):
    """Discover, rank and fetch the most relevant files of PROJECT.

    PROJECT is a numeric id or a path such as group/project.
    """
    options = _analysis_options(max_files, include_docs, no_config, ext, exclude)

    async def run() -> AnalysisResult:
        async with _client(session) as client:
            return await _run_analysis(client, project, ref, options, json_only)

    result = _run(run())

    if json_only:
        _echo_json(result.to_dict())
        return
    _print_analysis_summary(result)


@cli.command("review-repo")
@click.argument("project")
@_analysis_options_decorators
@click.option("--focus", type=click.Choice(FOCUS_AREAS), default="comprehensive", show_default=True)
@click.option("--depth", type=click.Choice(DEPTHS), default="standard", show_default=True)
@click.option("--model", "-m", default=DEFAULT_MODEL, show_default=True, help="Gemini model name")
@click.option("--gemini-key", envvar="GEMINI_API_KEY", default=None, help="Gemini API key (or GEMINI_API_KEY)")
@click.option("--output", "-O", type=click.Path(dir_okay=False), default=None, help="Write the review markdown here")
@click.option("--json-only", is_flag=True, help="Output raw JSON to stdout (for piping)")
@click.pass_obj
def review_repo(session: GitLabSession, project: str, ref: str, max_files: int, include_docs: bool,
                no_config: bool, ext: tuple, exclude: tuple, focus: str, depth: str, model: str,
                gemini_key: str | None, output: str | None, json_only: bool):
    """Analyze PROJECT and produce an AI review of the whole repository."""
    options = _analysis_options(max_files, include_docs, no_config, ext, exclude)
    gemini = GeminiClient(api_key=gemini_key, model=model)
    if not gemini.is_configured:
        raise click.ClickException("Gemini API key not configured. Set GEMINI_API_KEY or pass --gemini-key.")

    async def run() -> tuple[AnalysisResult, ReviewResult]:
        async with _client(session) as client:
            analysis = await _run_analysis(client, project, ref, options, json_only)
            reviewer = CodeReviewer(client, gemini)
            if not json_only:
                console.print(f"[dim]Reviewing {len(analysis.files)} files with {model}...[/]")
            return analysis, await reviewer.review_repository(analysis, focus=focus, depth=depth)

    analysis, review = _run(run())

    if output:
        with open(output, "w", encoding="utf-8") as fh:
            fh.write(review.full_review)

    if json_only:
        _echo_json({"analysis": analysis.to_dict(), "review": review.to_dict()})
        return
    _print_analysis_summary(analysis)
    _print_review(review, title=f"Review of {analysis.name}")
    if output:
        console.print(f"\n[green]Review written to {output}[/]")


@cli.command("review-mr")
@click.argument("project")
@click.argument("mr_iid", type=int)
@click.option("--post", is_flag=True, help="Post the review as a merge request note")
@click.option("--model", "-m", default=DEFAULT_MODEL, show_default=True, help="Gemini model name")
@click.option("--gemini-key", envvar="GEMINI_API_KEY", default=None, help="Gemini API key (or GEMINI_API_KEY)")
@click.option("--json-only", is_flag=True, help="Output raw JSON to stdout (for piping)")
@click.pass_obj
def review_mr(session: GitLabSession, project: str, mr_iid: int, post: bool, model: str,
              gemini_key: str | None, json_only: bool):
    """Review merge request MR_IID of PROJECT."""
    gemini = GeminiClient(api_key=gemini_key, model=model)
    if not gemini.is_configured:
        raise click.ClickException("Gemini API key not configured. Set GEMINI_API_KEY or pass --gemini-key.")

    async def run() -> ReviewResult:
        async with _client(session) as client:
            return await CodeReviewer(client, gemini).review_merge_request(project, mr_iid, post_note=post)

    with console.status("Reviewing merge request...") if not json_only else nullcontext():
        review = _run(run())

    if json_only:
        _echo_json(review.to_dict())
        return
    _print_review(review, title=f"!{mr_iid} {review.metadata.get('title', '')}")
    if post:
        console.print("[green]Review posted as a merge request note.[/]")


@cli.command()
@click.argument("projects", nargs=-1, required=True)
@click.option("--check", "check_branch", default=None, help="Report whether this branch exists in each project")
@click.option("--json-only", is_flag=True, help="Output raw JSON to stdout (for piping)")
@click.pass_obj
def branches(session: GitLabSession, projects: tuple, check_branch: str | None, json_only: bool):
    """List branches shared by PROJECTS."""
    async def run():
        async with _client(session) as client:
            return await fetch_branches(client, projects)

    index = _run(run())
    common = common_branches(index, list(projects))

    if json_only:
        data: dict[str, Any] = {"common": common, "branches": index.branches, "errors": index.errors}
        if check_branch:
            data["valid"] = {p: is_branch_valid(index, p, check_branch) for p in projects}
        _echo_json(data)
        return

    table = Table(title="Branches", show_header=True)
    table.add_column("Project", style="bold")
    table.add_column("Branches", justify="right")
    if check_branch:
        table.add_column(check_branch, justify="center")
    table.add_column("Error", style="red")
    for project in projects:
        row = [project, str(len(index.branches.get(project, [])))]
        if check_branch:
            row.append("[green]yes[/]" if is_branch_valid(index, project, check_branch) else "[red]no[/]")
        row.append(index.errors.get(project, ""))
        table.add_row(*row)
    console.print(table)
    console.print(f"[bold]Common branches:[/] {', '.join(common)}")


@cli.command("bulk-mr")
@click.argument("projects", nargs=-1, required=True)
@click.option("--source", "-s", "source_branch", required=True, help="Source branch")
@click.option("--target", "-t", "target_branch", required=True, help="Target branch")
@click.option("--title", required=True, help="Merge request title")
@click.option("--description", "-d", default=None, help="Merge request description")
@click.option("--json-only", is_flag=True, help="Output raw JSON to stdout (for piping)")
@click.pass_obj
def bulk_mr(session: GitLabSession, projects: tuple, source_branch: str, target_branch: str,
            title: str, description: str | None, json_only: bool):
    """Open the same merge request in every one of PROJECTS."""
    async def run():
        async with _client(session) as client:
            return await create_merge_requests(
                client, projects, source_branch, target_branch, title, description
            )

    outcomes = _run(run())
    created = [o for o in outcomes if o.success]

    if json_only:
        _echo_json([
            {
                "project": o.item,
                "success": o.success,
                "web_url": (o.value or {}).get("web_url") if o.success else None,
                "error": o.error_message or None,
            }
            for o in outcomes
        ])
    else:
        table = Table(title=f"{source_branch} -> {target_branch}", show_header=True)
        table.add_column("Project", style="bold")
        table.add_column("Result")
        for o in outcomes:
            if o.success:
                table.add_row(str(o.item), f"[green]{(o.value or {}).get('web_url', 'created')}[/]")
            else:
                table.add_row(str(o.item), f"[red]{o.error_message}[/]")
        console.print(table)
        console.print(f"Created {len(created)} of {len(outcomes)} merge requests")

    if len(created) < len(outcomes):
        sys.exit(1)


@cli.command("rate-limit")
@click.pass_obj
def rate_limit(session: GitLabSession):
    """Show the current API quota for the token."""
    async def run():
        async with _client(session) as client:
            user = await client.get_current_user()
            return user, client.rate_limit, client.is_approaching_limit()

    user, state, approaching = _run(run())

    table = Table(title="GitLab Rate Limit", show_header=False, border_style="dim")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("User", user.get("username", "unknown"))
    table.add_row("Limit", str(state.limit) if state.limit is not None else "not reported")
    table.add_row("Remaining", str(state.remaining) if state.remaining is not None else "not reported")
    table.add_row("Resets", f"{state.reset:%Y-%m-%d %H:%M:%S} UTC" if state.reset else "-")
    console.print(table)
    if approaching:
        console.print("[yellow]Approaching the rate limit.[/]")


@cli.command()
def version():
    """Show version information."""
    console.print(f"glreview-cli v{__version__}")
    console.print("Bulk GitLab merge requests and AI code review")


def _print_analysis_summary(result: AnalysisResult) -> None:
    """Print a compact summary of a repository analysis."""
    table = Table(title="Repository Analysis", show_header=False, border_style="dim")
    table.add_column("Key", style="bold")
    table.add_column("Value")

    table.add_row("Name", result.name)
    table.add_row("Branch", result.branch)
    if result.project.get("description"):
        table.add_row("Description", result.project["description"][:80])
    table.add_row("Files", f"{result.total_files:,} total / {result.filtered_files:,} eligible / {len(result.files):,} fetched")
    if result.failed_files:
        table.add_row("Failed", f"{len(result.failed_files)} files could not be fetched")

    if result.languages:
        langs = ", ".join(f"{k} ({v:.0f}%)" for k, v in sorted(result.languages.items(), key=lambda x: -x[1])[:5])
        table.add_row("Languages", langs)

    table.add_row("Lines", f"{result.analysis.total_lines:,}")
    table.add_row("Deepest nesting", str(result.analysis.deepest_nesting))
    console.print(table)

    if result.files:
        top = Table(title="Top files", show_header=True)
        top.add_column("Path", style="cyan")
        top.add_column("Priority", justify="right")
        top.add_column("Size", justify="right")
        for f in result.files[:10]:
            top.add_row(f.path, f"{f.priority:g}", f"{f.size or 0:,}")
        console.print(top)


def _print_review(review: ReviewResult, title: str) -> None:
    console.print()
    subtitle = review.summary or None
    console.print(Panel(Markdown(review.full_review), title=title, subtitle=subtitle, border_style="cyan"))
    if review.missing_sections:
        console.print(f"[yellow]Sections not found in the reply: {', '.join(review.missing_sections)}[/]")


if __name__ == "__main__":
    cli()
