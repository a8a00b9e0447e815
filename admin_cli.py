"""
`novel-admin`: moderation commands against a running Novel Reading API.

The session is stored in SESSION_FILE, so `login` once and the other
commands reuse (and silently refresh) the stored tokens.
"""
import json
from typing import Any

import click

from api_client import ApiError, UnauthenticatedError
from config import get_settings
from container import Container, build_container
from logging_utils import configure_logging
from repository import RefreshType

NOVEL_STATUSES = ["DRAFT", "PUBLISHED", "ONGOING", "COMPLETED", "HIATUS", "CANCELLED"]


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, sort_keys=True, default=str))


def _container(ctx: click.Context) -> Container:
    return ctx.find_object(Container)


def _failure(e: ApiError) -> click.ClickException:
    if isinstance(e, UnauthenticatedError):
        return click.ClickException(f"{e.message} (run `novel-admin login`)")
    return click.ClickException(str(e))


@click.group()
@click.option("--api", "api_base_url", default=None, help="Base URL of the API, e.g. http://localhost:8000/api")
@click.option("-v", "--verbose", is_flag=True, default=False)
@click.pass_context
def cli(ctx: click.Context, api_base_url: str, verbose: bool) -> None:
    """Administer users and novels."""
    settings = get_settings()
    if api_base_url:
        settings = settings.model_copy(update={"api_base_url": api_base_url.rstrip("/")})
    configure_logging("DEBUG" if verbose else settings.log_level)
    container = build_container(settings)
    ctx.obj = container
    ctx.call_on_close(container.close)


@cli.command("login")
@click.argument("username_or_email")
@click.password_option(confirmation_prompt=False)
@click.pass_context
def login(ctx: click.Context, username_or_email: str, password: str) -> None:
    """Sign in and store the session."""
    api = _container(ctx).api
    try:
        data = api.login(username_or_email, password)
    except ApiError as e:
        raise _failure(e) from e
    if "ADMIN" not in data.user.roles:
        click.secho(f"Signed in as {data.user.username}, who is not an admin", fg="yellow")
    else:
        click.echo(f"Signed in as {data.user.username}")


@cli.command("logout")
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Forget the stored session."""
    _container(ctx).api.logout()
    click.echo("Signed out")


@cli.command("whoami")
@click.pass_context
def whoami(ctx: click.Context) -> None:
    state = _container(ctx).session.state
    if not state.is_logged_in:
        raise click.ClickException("Not signed in")
    click.echo(f"{state.username} <{state.email}> ({state.user_id})")


@cli.command("dashboard")
@click.pass_context
def dashboard(ctx: click.Context) -> None:
    """Show collection counts."""
    try:
        stats = _container(ctx).api.stats()
    except ApiError as e:
        raise _failure(e) from e
    width = max(len(k) for k in stats) if stats else 0
    for key in sorted(stats):
        click.echo(f"{key.ljust(width)}  {stats[key]}")


# -------------------- users --------------------

@cli.group("users")
def users() -> None:
    """Manage user accounts."""


@users.command("list")
@click.option("--page", type=int, default=0, show_default=True)
@click.option("--size", type=int, default=20, show_default=True)
@click.option("-q", "--query", default=None, help="Match username or email")
@click.option("--json", "as_json", is_flag=True, default=False)
@click.pass_context
def users_list(ctx: click.Context, page: int, size: int, query: str, as_json: bool) -> None:
    try:
        result = _container(ctx).api.list_users(page=page, size=size, q=query)
    except ApiError as e:
        raise _failure(e) from e
    if as_json:
        _echo_json(result.model_dump(mode="json"))
        return
    for user in result.content:
        click.echo(f"{user.id}  {user.username:<20} {user.email:<30} {','.join(user.roles)}  {user.status or ''}")
    click.echo(f"page {result.page + 1}/{max(result.total_pages, 1)}, {result.total_elements} users")


@users.command("delete")
@click.argument("user_id")
@click.confirmation_option(prompt="Delete this user and their interactions?")
@click.pass_context
def users_delete(ctx: click.Context, user_id: str) -> None:
    try:
        _container(ctx).api.delete_user(user_id)
    except ApiError as e:
        raise _failure(e) from e
    click.echo(f"Deleted user {user_id}")


# -------------------- novels --------------------

@cli.group("novels")
def novels() -> None:
    """Manage novels."""


@novels.command("list")
@click.option("--page", type=int, default=0, show_default=True)
@click.option("--size", type=int, default=20, show_default=True)
@click.option("--status", type=click.Choice(NOVEL_STATUSES), default=None)
@click.option("--json", "as_json", is_flag=True, default=False)
@click.pass_context
def novels_list(ctx: click.Context, page: int, size: int, status: str, as_json: bool) -> None:
    try:
        result = _container(ctx).api.list_novels(page=page, size=size, status=status)
    except ApiError as e:
        raise _failure(e) from e
    if as_json:
        _echo_json(result.model_dump(mode="json"))
        return
    for novel in result.content:
        click.echo(f"{novel.id}  {novel.status:<10} {novel.title}  by {novel.author_name}")
    click.echo(f"page {result.page + 1}/{max(result.total_pages, 1)}, {result.total_elements} novels")


@novels.command("delete")
@click.argument("novel_id")
@click.confirmation_option(prompt="Delete this novel with its chapters, comments and reviews?")
@click.pass_context
def novels_delete(ctx: click.Context, novel_id: str) -> None:
    container = _container(ctx)
    try:
        container.api.delete_novel(novel_id)
    except ApiError as e:
        raise _failure(e) from e
    container.cache.remove_novel(novel_id)
    container.refresh_manager.trigger_refresh(RefreshType.ALL)
    click.echo(f"Deleted novel {novel_id}")


@novels.command("status")
@click.argument("novel_id")
@click.argument("status", type=click.Choice(NOVEL_STATUSES))
@click.pass_context
def novels_status(ctx: click.Context, novel_id: str, status: str) -> None:
    """Change the publication status of a novel."""
    container = _container(ctx)
    try:
        novel = container.api.update_novel(novel_id, status=status)
    except ApiError as e:
        raise _failure(e) from e
    container.refresh_manager.trigger_refresh(RefreshType.ALL)
    click.echo(f"{novel.title}: {novel.status}")


if __name__ == "__main__":
    cli()
