"""revu CLI: read-only views over any configured code-review backend."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Annotated, TypeVar

import typer
from rich import print as rprint
from rich.logging import RichHandler
from rich.table import Table

from revu.errors import ApiError, ProviderError
from revu.models import ListPRsParams, StateFilter
from revu.providers.compat import CompatProvider
from revu.providers.factory import create_provider
from revu.settings import get_settings

app = typer.Typer(help="revu: one review workflow over GitHub, GitLab, Bitbucket, Azure DevOps and Gitea", no_args_is_help=True)

T = TypeVar("T")

ProfileOpt = Annotated[
    str | None,
    typer.Option("--profile", "-p", help="Profile name from ~/.config/revu/config.toml"),
]

_CONCLUSION_STYLE = {"success": "green", "failure": "red", "timed_out": "red", "cancelled": "yellow"}


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log every HTTP request")] = False,
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(show_path=False)],
    )
    # httpx logs each request at INFO; ours are enough
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _run(profile: str | None, action: Callable[[CompatProvider], Awaitable[T]]) -> T:
    """Build the provider for ``profile``, run ``action`` against it, close it."""
    settings = get_settings(profile=profile)

    async def _go() -> T:
        async with create_provider(settings.provider_config()) as provider:
            return await action(provider)

    try:
        return asyncio.run(_go())
    except ApiError as exc:
        rprint(f"[red]{exc.message}[/red] [dim](status {exc.status})[/dim]")
        if exc.detail:
            rprint(f"  [dim]{exc.detail}[/dim]")
        raise typer.Exit(1) from exc
    except ProviderError as exc:
        rprint(f"[red]{exc.message}[/red]")
        raise typer.Exit(1) from exc


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("list-prs")
def list_prs(
    profile: ProfileOpt = None,
    state: Annotated[str, typer.Option("--state", "-s", help="open, closed or all")] = "open",
    mine: Annotated[bool, typer.Option("--mine", help="Only pull requests I authored")] = False,
) -> None:
    """List pull requests in the configured repository."""
    if state not in ("open", "closed", "all"):
        rprint(f"[red]Unknown state '{state}'. Valid: open, closed, all[/red]")
        raise typer.Exit(1)
    state_filter: StateFilter = state  # type: ignore[assignment]

    async def fetch(provider: CompatProvider):
        if mine:
            return await provider.get_my_prs(state_filter)
        return (await provider.list_prs(ListPRsParams(state=state_filter))).items

    prs = _run(profile, fetch)

    table = Table(title="Pull Requests")
    table.add_column("#", style="cyan")
    table.add_column("State")
    table.add_column("Author")
    table.add_column("Title")
    table.add_column("URL", style="dim")

    for pr in prs:
        pr_state = "merged" if pr.merged else ("draft" if pr.draft else pr.state)
        table.add_row(str(pr.number), pr_state, pr.user.login, pr.title, pr.html_url)

    rprint(table)


@app.command("show-pr")
def show_pr(
    number: Annotated[int, typer.Argument(help="Pull request number")],
    profile: ProfileOpt = None,
) -> None:
    """Show details, files and reviews for a pull request."""

    async def fetch(provider: CompatProvider):
        return await asyncio.gather(
            provider.get_pr(number), provider.get_pr_files(number), provider.get_pr_reviews(number)
        )

    pr, files, reviews = _run(profile, fetch)

    table = Table(title=f"#{pr.number}: {pr.title}")
    table.add_column("Field", style="bold")
    table.add_column("Value")

    table.add_row("State", "merged" if pr.merged else pr.state)
    table.add_row("Draft", "yes" if pr.draft else "no")
    table.add_row("Author", pr.user.login)
    table.add_row("Branches", f"{pr.head.ref} → {pr.base.ref}")
    table.add_row("Labels", ", ".join(label.name for label in pr.labels) or "none")
    table.add_row("Reviews", ", ".join(f"{r.user.login}: {r.state}" for r in reviews) or "none")
    table.add_row("URL", pr.html_url)
    table.add_row("Description", pr.body or "_No description provided._")

    rprint(table)

    files_table = Table(title=f"Files ({len(files)})")
    files_table.add_column("Status")
    files_table.add_column("File", style="cyan")
    files_table.add_column("+", style="green", justify="right")
    files_table.add_column("-", style="red", justify="right")
    for file in files:
        name = f"{file.previous_filename} → {file.filename}" if file.previous_filename else file.filename
        files_table.add_row(file.status, name, str(file.additions), str(file.deletions))

    rprint(files_table)


@app.command("checks")
def checks(
    ref: Annotated[str, typer.Argument(help="Branch name or commit SHA")],
    profile: ProfileOpt = None,
) -> None:
    """Show CI check runs for a branch or commit."""
    result = _run(profile, lambda provider: provider.get_pr_checks(ref))

    if not result.total_count:
        rprint(f"[dim]No checks found for {ref}[/dim]")
        return

    table = Table(title=f"Checks for {ref}")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Conclusion")
    table.add_column("URL", style="dim")

    for run in result.check_runs:
        conclusion = run.conclusion or "-"
        style = _CONCLUSION_STYLE.get(conclusion, "")
        table.add_row(run.name, run.status, f"[{style}]{conclusion}[/{style}]" if style else conclusion, run.html_url or "")

    rprint(table)


@app.command("threads")
def threads(
    number: Annotated[int, typer.Argument(help="Pull request number")],
    profile: ProfileOpt = None,
) -> None:
    """List review threads and whether they are resolved."""
    result = _run(profile, lambda provider: provider.get_review_threads(number))

    table = Table(title=f"Review threads on #{number}")
    table.add_column("Thread", style="cyan")
    table.add_column("Resolved")
    table.add_column("Comments", justify="right")

    for thread in result:
        table.add_row(thread.id, "[green]yes[/green]" if thread.is_resolved else "no", str(len(thread.comment_ids)))

    rprint(table)


@app.command("whoami")
def whoami(profile: ProfileOpt = None) -> None:
    """Show the user the configured token authenticates as."""
    user = _run(profile, lambda provider: provider.get_current_user())
    rprint(f"[bold]{user.login}[/bold]")


@app.command("capabilities")
def capabilities(profile: ProfileOpt = None) -> None:
    """Show which optional features the configured backend supports."""
    settings = get_settings(profile=profile)
    provider = create_provider(settings.provider_config())
    caps = provider.capabilities

    table = Table(title=f"Capabilities: {provider.type}")
    table.add_column("Feature", style="bold")
    table.add_column("Supported")

    for name, value in caps.model_dump().items():
        if isinstance(value, (list, tuple)):
            shown = ", ".join(value) or "none"
        else:
            shown = "[green]yes[/green]" if value else "[dim]no[/dim]"
        table.add_row(name.removeprefix("supports_").replace("_", " "), shown)

    rprint(table)
    asyncio.run(provider.aclose())
