import logging
import os
from pathlib import Path
from typing import Optional, cast

import typer
from dotenv import load_dotenv
from rich import print
from rich.logging import RichHandler
from rich.markup import escape

from .artifacts import save_exchange, save_generator_error
from .grammar import BOARD_NAMES, BoardName, is_board_name
from .llm import DEFAULT_MODEL, GeneratorError
from .models import FLOOR_SOURCES, FloorSource, ForumState, Post
from .parser import parse_tagged_blocks
from .presets import DEFAULT_PRESET, add_preset, load_preset_file
from .prompts import (
    build_continue_prompt,
    build_followup_prompt,
    build_new_post_prompt,
    build_reply_prompt,
)
from .reconciler import add_user_floor, apply_parsed_blocks, get_post
from .session import generate_step, next_message_id
from .store import FileKeyValueStore, load_state, save_state, storage_key

app = typer.Typer(help="Anonymous board kept in sync with a text generator.")

PROMPT_KINDS = ("reply", "followup", "continue", "new")

SCOPE_OPTION = typer.Option("global", "--scope", help="Session scope the board state is stored under.")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging."),
):
    """anonboard CLI entrypoint."""
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(show_path=False)],
        force=True,
    )
    if ctx.invoked_subcommand is None:
        print(ctx.get_help())
        raise typer.Exit(code=0)


def _resolve_board(board: str) -> BoardName:
    normalized = board.strip()
    if not is_board_name(normalized):
        print(f"[red]Unknown board '{escape(board)}'. Use one of: {', '.join(BOARD_NAMES)}.[/red]")
        raise typer.Exit(code=2)
    return cast(BoardName, normalized)


def _resolve_source(source: str) -> FloorSource:
    normalized = source.lower()
    if normalized not in FLOOR_SOURCES:
        print(f"[red]Invalid source. Use one of: {', '.join(FLOOR_SOURCES)}.[/red]")
        raise typer.Exit(code=2)
    return cast(FloorSource, normalized)


def _read_api_key() -> str:
    api_key = os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        print("[red]ANTHROPIC_API_KEY not found in environment.[/red]")
        raise typer.Exit(code=1)
    return api_key


def _read_file(file: Path) -> str:
    if not file.exists():
        print("[red]File not found[/red]")
        raise typer.Exit(code=1)
    try:
        return file.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        print("[red]File is not valid UTF-8 text[/red]")
        raise typer.Exit(code=1)


def _runs_dir() -> str:
    return os.getenv("ANONBOARD_RUNS_DIR", "runs")


def _open(scope: str) -> tuple[FileKeyValueStore, str, ForumState]:
    store = FileKeyValueStore(os.getenv("ANONBOARD_STORE_DIR", ".anonboard"))
    key = storage_key(scope)
    return store, key, load_state(store, key)


def _require_post(state: ForumState, board: BoardName, post_no: int) -> Post:
    post = get_post(state, board, post_no)
    if post is None:
        print(f"[red]No post {post_no} on {board}.[/red]")
        raise typer.Exit(code=1)
    return post


def _handle_generator_error(exc: GeneratorError) -> None:
    failure_messages = {
        "empty_output": "Generator returned empty output",
        "api_error": "Generator request failed",
    }
    message = failure_messages.get(exc.kind, "Generator call failed")
    error_path = save_generator_error(exc.raw_text, exc.error, exc.kind, runs_dir=_runs_dir())
    print(f"[red]{message}.[/red] Saved error artifact to [bold]{error_path}[/bold].")
    raise typer.Exit(code=1)


def _print_counts(created_posts: int, appended_floors: int) -> None:
    print(f"new posts: {created_posts} | new floors: {appended_floors}")


def _run_generation(store: FileKeyValueStore, key: str, state: ForumState, prompt: str) -> None:
    api_key = _read_api_key()
    message_id = next_message_id(state)
    model = os.getenv("ANONBOARD_MODEL", DEFAULT_MODEL)

    try:
        generation = generate_step(state, prompt, message_id, api_key=api_key, model=model)
    except GeneratorError as exc:
        _handle_generator_error(exc)

    save_state(store, key, state)
    paths = save_exchange(prompt, generation.raw, generation.result, runs_dir=_runs_dir())
    if not generation.blocks:
        print("[yellow]Generator reply contained no post blocks.[/yellow]")
    _print_counts(generation.result.created_posts, generation.result.appended_floors)
    print(f"Saved raw generator output to [bold]{paths['raw_path']}[/bold]")


@app.command()
def boards(scope: str = SCOPE_OPTION):
    """List boards with their post counts."""
    _, _, state = _open(scope)
    print("[bold]Boards[/bold]")
    for board in BOARD_NAMES:
        posts = state.boards[board].posts
        print(f"- {board}: {len(posts)} post(s)")
        for post in posts:
            print(f"    {post.post_no}. {escape(post.title)} ({len(post.floors)} floor(s))")


@app.command()
def show(
    board: str,
    post_no: int,
    last: int = typer.Option(0, "--last", help="Only show the most recent N floors (0 = all)."),
    scope: str = SCOPE_OPTION,
):
    """Print a post and its floors."""
    resolved = _resolve_board(board)
    _, _, state = _open(scope)
    post = _require_post(state, resolved, post_no)

    print(f"[bold]{resolved} #{post.post_no}: {escape(post.title)}[/bold]")
    if post.body:
        print(escape(post.body))
    floors = post.floors[-last:] if last > 0 else post.floors
    for floor in floors:
        print(f"\n[bold]No.{floor.floor_no}[/bold] [dim]({floor.source})[/dim]")
        print(escape(floor.content))


@app.command()
def seed(
    overwrite: bool = typer.Option(False, "--overwrite", help="Clear every board before seeding."),
    file: Optional[Path] = typer.Option(None, "--file", help="JSON seed catalog (default: built-in)."),
    scope: str = SCOPE_OPTION,
):
    """Merge a seed catalog into the board state."""
    preset = DEFAULT_PRESET
    if file is not None:
        try:
            preset = load_preset_file(file)
        except FileNotFoundError:
            print("[red]File not found[/red]")
            raise typer.Exit(code=1)
        except ValueError as exc:
            print(f"[red]Invalid seed catalog:[/red] {escape(str(exc))}")
            raise typer.Exit(code=1)

    store, key, state = _open(scope)
    added = add_preset(state, preset, "overwrite" if overwrite else "append")
    save_state(store, key, state)
    print(f"Seeded {added} post(s).")


@app.command()
def ingest(
    file: Path,
    message_id: Optional[int] = typer.Option(
        None,
        "--message-id",
        help="Origin message id; re-ingesting the same id never duplicates floors.",
    ),
    source: str = typer.Option("ai", "--source", help="Floor source: ai, user or local."),
    scope: str = SCOPE_OPTION,
):
    """Parse tagged text from a file and reconcile it into the board state."""
    resolved_source = _resolve_source(source)
    content = _read_file(file)

    store, key, state = _open(scope)
    blocks = parse_tagged_blocks(content)
    result = apply_parsed_blocks(state, blocks, resolved_source, origin_message_id=message_id)
    save_state(store, key, state)

    print(f"parsed blocks: {len(blocks)}")
    _print_counts(result.created_posts, result.appended_floors)


@app.command()
def prompt(
    kind: str,
    board: str,
    post_no: Optional[int] = typer.Argument(None),
    instruction: Optional[str] = typer.Option(None, "--instruction", "-i", help="Extra instruction for the generator."),
    floors: Optional[int] = typer.Option(None, "--floors", help="Number of floors to request."),
    scope: str = SCOPE_OPTION,
):
    """Print the prompt a builder would send (reply, followup, continue or new)."""
    normalized_kind = kind.lower()
    if normalized_kind not in PROMPT_KINDS:
        print(f"[red]Invalid prompt kind. Use one of: {', '.join(PROMPT_KINDS)}.[/red]")
        raise typer.Exit(code=2)
    resolved = _resolve_board(board)
    if post_no is not None and post_no < 1:
        print("[red]Post number must be positive.[/red]")
        raise typer.Exit(code=2)
    _, _, state = _open(scope)

    extra = {"floors_to_generate": floors} if floors is not None else {}
    if normalized_kind == "new":
        if post_no is not None and get_post(state, resolved, post_no) is not None:
            print(f"[red]Post {post_no} already exists on {resolved}.[/red]")
            raise typer.Exit(code=2)
        text = build_new_post_prompt(state, resolved, post_no=post_no, user_instruction=instruction, **extra)
    else:
        if post_no is None:
            print(f"[red]'{normalized_kind}' needs a post number.[/red]")
            raise typer.Exit(code=2)
        if normalized_kind == "reply":
            text = build_reply_prompt(state, resolved, post_no, user_instruction=instruction, **extra)
        elif normalized_kind == "followup":
            text = build_followup_prompt(state, resolved, post_no, style_hint=instruction, **extra)
        else:
            text = build_continue_prompt(state, resolved, post_no, user_instruction=instruction, **extra)
    typer.echo(text)


@app.command()
def reply(
    board: str,
    post_no: int,
    instruction: Optional[str] = typer.Option(None, "--instruction", "-i"),
    scope: str = SCOPE_OPTION,
):
    """Ask the generator for new reply floors on a post."""
    resolved = _resolve_board(board)
    store, key, state = _open(scope)
    _require_post(state, resolved, post_no)
    _run_generation(store, key, state, build_reply_prompt(state, resolved, post_no, user_instruction=instruction))


@app.command("continue")
def continue_post(
    board: str,
    post_no: int,
    instruction: Optional[str] = typer.Option(None, "--instruction", "-i"),
    scope: str = SCOPE_OPTION,
):
    """Ask the generator to continue a post, with recent floors as context."""
    resolved = _resolve_board(board)
    store, key, state = _open(scope)
    _require_post(state, resolved, post_no)
    _run_generation(
        store, key, state, build_continue_prompt(state, resolved, post_no, user_instruction=instruction)
    )


@app.command()
def new(
    board: str,
    instruction: Optional[str] = typer.Option(None, "--instruction", "-i"),
    scope: str = SCOPE_OPTION,
):
    """Ask the generator for a brand-new post on a board."""
    resolved = _resolve_board(board)
    store, key, state = _open(scope)
    _run_generation(store, key, state, build_new_post_prompt(state, resolved, user_instruction=instruction))


@app.command()
def say(
    board: str,
    post_no: int,
    text: str,
    style: Optional[str] = typer.Option(None, "--style", help="Style hint for the follow-up replies."),
    scope: str = SCOPE_OPTION,
):
    """Post your own floor, then let the generator reply to it."""
    resolved = _resolve_board(board)
    store, key, state = _open(scope)
    _require_post(state, resolved, post_no)

    floor = add_user_floor(state, resolved, post_no, text)
    if floor is None:
        print("[red]Reply text is empty.[/red]")
        raise typer.Exit(code=2)
    save_state(store, key, state)
    print(f"Posted as No.{floor.floor_no}.")

    _run_generation(store, key, state, build_followup_prompt(state, resolved, post_no, style_hint=style))


if __name__ == "__main__":
    app()
