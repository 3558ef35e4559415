"""CLI entrypoint (Typer).

- `awash serve`: run the API
- `awash process-queue`: drain one batch of queued jobs (for cron)
- `awash classify "<request>"`: show how a request would be routed
- `awash package <dir> --name my-app`: zip a project directory
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import typer

from awash.config import get_settings


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

app = typer.Typer(help="Awash backend CLI.")

SKIPPED_DIRS = {"node_modules", ".git", "dist", "build"}


@app.command()
def serve(
    host: str = typer.Option(None, help="Bind address (settings default if omitted)"),
    port: int = typer.Option(None, help="Port (settings default if omitted)"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Run the API server."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "awash.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
    )


@app.command("process-queue")
def process_queue(batch_size: int = typer.Option(None, "--batch-size", min=1)):
    """Drain one batch of the job queue and print the summary."""
    from awash.database.session import async_session_maker, close_db
    from awash.jobs.handlers import run_job
    from awash.jobs.queue import process_job_queue

    async def _run():
        try:
            return await process_job_queue(async_session_maker, run_job, batch_size=batch_size)
        finally:
            await close_db()

    summary = asyncio.run(_run())
    typer.echo(json.dumps(summary.model_dump(), indent=2))


@app.command()
def classify(request: str):
    """Show the route a request would take."""
    from awash.agent.intent import classify_intent

    decision = classify_intent(request)
    typer.echo(f"{decision.route.value} ({decision.confidence:.2f}): {decision.reasoning}")
    typer.echo(f"Estimated: {decision.estimated_time}, {decision.estimated_cost}")


@app.command()
def package(
    directory: Path = typer.Argument(..., exists=True, file_okay=False, resolve_path=True),
    name: str = typer.Option("my-app", "--name"),
    output: Path = typer.Option(None, "--output", "-o", help="Zip path (defaults to <name>.zip)"),
):
    """Package a project directory as a zip with package.json and install notes."""
    from awash.packaging import package_project

    files = {}
    for path in sorted(directory.rglob("*")):
        relative = path.relative_to(directory)
        if not path.is_file() or SKIPPED_DIRS.intersection(relative.parts):
            continue
        try:
            files[relative.as_posix()] = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            typer.echo(f"Skipping binary file {relative}", err=True)

    if not files:
        typer.echo("No files to package", err=True)
        raise typer.Exit(code=1)

    target = output or Path(f"{name}.zip")
    target.write_bytes(package_project(files, project_name=name))
    typer.echo(f"Wrote {target} ({len(files)} files)")


if __name__ == "__main__":
    app()
