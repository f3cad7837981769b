"""CLI for the agentdeck command."""

import shlex
from pathlib import Path
from typing import Optional

import typer

from .config import DeckConfig
from .errors import ConfigError


app = typer.Typer(
    help="Run coding-assistant CLI sessions side by side in one terminal",
    add_completion=False,
)


@app.command()
def main(
    project: Path = typer.Argument(Path("."), help="Project directory the sessions start in"),
    command: Optional[str] = typer.Option(None, "--command", "-c", help="Assistant command line (default from config)"),
    resume: Optional[str] = typer.Option(None, "--resume", help="Resume an existing assistant conversation"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Config file to use"),
    dangerous: Optional[bool] = typer.Option(
        None, "--dangerous/--safe", help="Pass --dangerously-skip-permissions to the assistant"
    ),
    autostart: bool = typer.Option(True, "--autostart/--no-autostart", help="Open a session on start"),
):
    """
    Start the dashboard.

    Each pane hosts one assistant session in its own pseudo-terminal.

    Examples:
        # Open the current directory with the configured assistant
        agentdeck

        # Resume a conversation in another project
        agentdeck ~/src/app --resume 4f2c9e

        # Try another CLI without permission bypass
        agentdeck -c "codex" --safe
    """
    try:
        config = DeckConfig.load(config_path)
    except ConfigError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2)

    if command:
        config.command = shlex.split(command)
    if dangerous is not None:
        config.dangerous_mode = dangerous

    project = project.expanduser().resolve()
    if not project.is_dir():
        typer.echo(f"Error: project directory does not exist: {project}", err=True)
        raise typer.Exit(code=2)

    from .dashboard.app import DeckApp

    deck = DeckApp(
        project_path=str(project),
        config=config,
        resume_id=resume,
        autostart=autostart,
    )
    try:
        deck.run()
    finally:
        deck.manager.shutdown()


if __name__ == "__main__":
    app()
