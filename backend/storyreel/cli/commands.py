"""CLI commands for storyreel using Typer and Rich.

Commands:
- init-db: Create the metadata schema
- generate: Create a chat from a prompt and run the full pipeline
- resume: Rerun a chat, reprocessing only unfinished scenes
- status: Show one chat and its scenes
- list: List chats
- stitch: Re-stitch a chat whose scenes all have videos
"""

import asyncio
import logging
import uuid
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from storyreel import validate_dependencies
from storyreel.config import get_settings
from storyreel.context import open_context
from storyreel.db.repository import MetadataStore
from storyreel.orchestrator.pipeline import PipelineRunResult, create_and_run, run_chat
from storyreel.orchestrator.state import (
    CHAT_DONE,
    CHAT_PLANNING,
    CHAT_STATES,
    CHAT_STITCHING,
    CHAT_VIDEOS_PENDING,
    SCENE_FAILED,
    SCENE_IMAGE_READY,
    SCENE_VIDEO_READY,
    derive_chat_state,
    scene_state,
    summarize_scenes,
)
from storyreel.pipeline.stitcher import stitch_chat

app = typer.Typer(name="storyreel", help="Prompt-to-video generative media pipeline")
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _require_ffmpeg() -> None:
    # Fail-fast dependency validation
    try:
        validate_dependencies(get_settings().transcode.ffmpeg_binary)
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)


def _parse_chat_id(chat_id_str: str) -> uuid.UUID:
    try:
        return uuid.UUID(chat_id_str)
    except ValueError:
        console.print(f"[red]Error:[/red] Invalid chat UUID: {chat_id_str}")
        raise typer.Exit(code=1)


def _print_result(result: PipelineRunResult) -> None:
    color = _get_status_color(result.status)
    console.print(f"[bold]Chat:[/bold] {result.chat_id}")
    console.print(f"[bold]Status:[/bold] [{color}]{result.status}[/{color}]")
    for number, error in sorted(result.scene_errors.items()):
        console.print(f"[red]✗ Scene {number}:[/red] {error}")
    if result.final_video_url:
        console.print(f"[green]✓[/green] Final video: {result.final_video_url}")
    elif result.status == CHAT_VIDEOS_PENDING:
        console.print(
            "[yellow]Not every scene has a video yet. Retry with:[/yellow] "
            f"storyreel resume {result.chat_id}"
        )


@app.command("init-db")
def init_db():
    """Create the database schema (idempotent)."""
    asyncio.run(_init_db_async())


async def _init_db_async():
    settings = get_settings()
    store = MetadataStore.from_url(settings.storage.database_url)
    try:
        await store.init_schema()
    finally:
        await store.close()
    console.print(f"[green]✓[/green] Schema ready at {settings.storage.database_url}")


@app.command()
def generate(
    prompt: str = typer.Argument(..., help="Story idea to turn into a video"),
    scenes: Optional[int] = typer.Option(None, "--scenes", "-n", help="Number of scenes (1-99)"),
    user: str = typer.Option("local", "--user", "-u", help="Owning user id"),
):
    """Plan scenes for a prompt, render them, and stitch the final video."""
    _require_ffmpeg()
    asyncio.run(_generate_async(prompt, scenes, user))


async def _generate_async(prompt: str, scenes: Optional[int], user: str):
    async with open_context(get_settings()) as ctx:
        try:
            with console.status("[bold green]Starting pipeline...") as status:
                def callback_wrapper(msg: str):
                    status.update(f"[bold green]{msg}")

                result = await create_and_run(
                    ctx, user, prompt, scenes, progress_callback=callback_wrapper
                )
        except ValueError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=2)
        except Exception as e:
            console.print()
            console.print(f"[red]✗ Pipeline failed:[/red] {str(e)}")
            console.print("[yellow]Find the chat with[/yellow] storyreel list [yellow]and rerun it with[/yellow] storyreel resume")
            raise typer.Exit(code=1)

    _print_result(result)


@app.command()
def resume(
    chat_id: str = typer.Argument(..., help="Chat UUID to resume"),
    force: bool = typer.Option(False, "--force", "-f", help="Regenerate scenes that already have media"),
):
    """Resume a chat from its last incomplete step."""
    _require_ffmpeg()
    asyncio.run(_resume_async(chat_id, force))


async def _resume_async(chat_id_str: str, force: bool):
    chat_uuid = _parse_chat_id(chat_id_str)

    async with open_context(get_settings()) as ctx:
        chat = await ctx.metadata.get_chat(chat_uuid)
        if not chat:
            console.print(f"[red]Error:[/red] Chat not found: {chat_uuid}")
            raise typer.Exit(code=1)

        console.print(f"[yellow]Resuming chat:[/yellow] {chat.id}")
        console.print(f"[yellow]Current status:[/yellow] {chat.status}")
        console.print()

        try:
            with console.status("[bold green]Resuming pipeline...") as status:
                def callback_wrapper(msg: str):
                    status.update(f"[bold green]{msg}")

                result = await run_chat(
                    ctx, chat.id, force=force, progress_callback=callback_wrapper
                )
        except Exception as e:
            console.print()
            console.print(f"[red]✗ Pipeline failed:[/red] {str(e)}")
            console.print(f"[yellow]You can retry with:[/yellow] storyreel resume {chat.id}")
            raise typer.Exit(code=1)

    _print_result(result)


@app.command()
def status(
    chat_id: str = typer.Argument(..., help="Chat UUID"),
):
    """Show a chat, its scenes and its final video."""
    asyncio.run(_status_async(chat_id))


async def _status_async(chat_id_str: str):
    chat_uuid = _parse_chat_id(chat_id_str)

    async with open_context(get_settings(), remote=False) as ctx:
        chat = await ctx.metadata.get_chat(chat_uuid)
        if not chat:
            console.print(f"[red]Error:[/red] Chat not found: {chat_uuid}")
            raise typer.Exit(code=1)
        scenes = await ctx.metadata.list_scenes(chat.id)
        final = await ctx.metadata.get_final_video(chat.id)

    states = [scene_state(s.image_url, s.video_url, s.status) for s in scenes]
    counts = summarize_scenes(states)
    status_color = _get_status_color(chat.status)
    info_lines = [
        f"[bold]ID:[/bold] {chat.id}",
        f"[bold]User:[/bold] {chat.user_id}",
        f"[bold]Title:[/bold] {chat.title}",
        f"[bold]Status:[/bold] [{status_color}]{chat.status}[/{status_color}] "
        f"({CHAT_STATES.get(chat.status, 'unknown')})",
        f"[bold]Scenes:[/bold] {len(scenes)}/{chat.scene_count} "
        f"({counts[SCENE_VIDEO_READY]} video, {counts[SCENE_IMAGE_READY]} image only, "
        f"{counts[SCENE_FAILED]} failed)",
        f"[bold]Resumes from:[/bold] {derive_chat_state(bool(scenes), states, final is not None)}",
        f"[bold]Created:[/bold] {chat.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
    ]
    if final:
        info_lines.append(f"[bold]Final video:[/bold] [green]{final.video_url}[/green]")
    if chat.error_message:
        info_lines.append(f"[bold]Error:[/bold] [red]{chat.error_message}[/red]")

    console.print(Panel("\n".join(info_lines), title="[bold]Chat Status[/bold]", border_style="blue"))

    if scenes:
        table = Table(show_header=True, header_style="bold blue")
        table.add_column("#", justify="right")
        table.add_column("State")
        table.add_column("Image")
        table.add_column("Video")
        for scene, state in zip(scenes, states):
            color = _get_scene_color(state)
            table.add_row(
                str(scene.scene_number),
                f"[{color}]{state}[/{color}]",
                scene.image_url or "-",
                scene.video_url or (scene.error_message or "-"),
            )
        console.print(table)


@app.command(name="list")
def list_chats(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Only this user's chats"),
):
    """List chats, newest first."""
    asyncio.run(_list_async(user))


async def _list_async(user: Optional[str]):
    async with open_context(get_settings(), remote=False) as ctx:
        chats = await ctx.metadata.list_chats(user)

    if not chats:
        console.print("[yellow]No chats found[/yellow]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="dim")
    table.add_column("User")
    table.add_column("Title")
    table.add_column("Scenes", justify="right")
    table.add_column("Status")
    table.add_column("Created")

    for chat in chats:
        title_display = chat.title if len(chat.title) <= 50 else chat.title[:47] + "..."
        status_color = _get_status_color(chat.status)
        table.add_row(
            str(chat.id),
            chat.user_id,
            title_display,
            str(chat.scene_count),
            f"[{status_color}]{chat.status}[/{status_color}]",
            chat.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def stitch(
    chat_id: str = typer.Argument(..., help="Chat UUID to re-stitch"),
):
    """Re-stitch a chat whose scenes all have videos."""
    _require_ffmpeg()
    asyncio.run(_stitch_async(chat_id))


async def _stitch_async(chat_id_str: str):
    chat_uuid = _parse_chat_id(chat_id_str)

    async with open_context(get_settings(), remote=False) as ctx:
        try:
            with console.status("[bold green]Stitching video..."):
                url = await stitch_chat(ctx, chat_uuid)
        except Exception as e:
            console.print()
            console.print(f"[red]✗ Stitching failed:[/red] {str(e)}")
            raise typer.Exit(code=1)

    console.print("[green]✓[/green] Stitching complete!")
    console.print(f"[green]Final video:[/green] {url}")


def _get_status_color(status: str) -> str:
    """Get Rich color for a chat status."""
    if status == CHAT_DONE:
        return "green"
    elif status == CHAT_VIDEOS_PENDING:
        return "yellow"
    elif status == CHAT_STITCHING:
        return "cyan"
    elif status == CHAT_PLANNING:
        return "dim"
    else:
        return "white"


def _get_scene_color(state: str) -> str:
    return {
        SCENE_VIDEO_READY: "green",
        SCENE_IMAGE_READY: "yellow",
        SCENE_FAILED: "red",
    }.get(state, "dim")
