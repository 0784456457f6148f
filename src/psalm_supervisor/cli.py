import logging
from pathlib import Path
from typing import Optional

import typer

from psalm_supervisor import __version__
from psalm_supervisor.app import activate
from psalm_supervisor.constants import DEFAULT_CONTROL_HOST, DEFAULT_CONTROL_PORT, DEFAULT_SETTINGS, DEFAULT_SETTINGS_FILE
from psalm_supervisor.errors import ConfigurationError
from psalm_supervisor.util.general import save_yaml

app = typer.Typer(add_completion=False, help="Supervise the Psalm language server for a workspace.")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(False, "--version", callback=_version_callback, is_eager=True, help="Show the version and exit."),
) -> None:
    pass


@app.command()
def run(
    workspace: list[Path] = typer.Option(..., "--workspace", "-w", exists=True, file_okay=False, help="Workspace root (repeatable)."),
    settings: Path = typer.Option(Path(DEFAULT_SETTINGS_FILE), "--settings", "-s", dir_okay=False, help="YAML settings file."),
    active_document: Optional[Path] = typer.Option(None, "--active-document", help="Document focused at startup."),
    config_path: list[str] = typer.Option([], "--config-path", "-c", help="Config search glob, overrides psalm.configPaths (repeatable)."),
    host: str = typer.Option(DEFAULT_CONTROL_HOST, "--host", help="Control server host."),
    port: int = typer.Option(DEFAULT_CONTROL_PORT, "--port", help="Control server port (0 disables it)."),
    log_level: str = typer.Option("INFO", "--log-level", help="Python logging level for the supervisor itself."),
) -> None:
    """Start the language server and keep it in sync with the workspace until interrupted."""
    logging.basicConfig(level=log_level.upper(), format="%(asctime)s %(levelname)-5s %(name)s: %(message)s")

    initial_settings = {"configPaths": list(config_path)} if config_path else None
    try:
        application = activate(
            [str(w) for w in workspace],
            settings_path=str(settings),
            active_document=str(active_document) if active_document else None,
            initial_settings=initial_settings,
            control_host=host,
            control_port=port,
        )
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=2) from e
    if application is None:
        raise typer.Exit(code=1)
    application.run_forever()


@app.command("init-settings")
def init_settings(
    dest: Path = typer.Argument(Path(DEFAULT_SETTINGS_FILE), dir_okay=False, help="Where to write the settings file."),
) -> None:
    """Write a settings file containing the default values."""
    if dest.exists():
        typer.echo(f"Settings file already exists: {dest}", err=True)
        raise typer.Exit(code=1)
    save_yaml(str(dest), {"psalm": dict(DEFAULT_SETTINGS)})
    typer.echo(f"Wrote {dest}")


if __name__ == "__main__":
    app()
