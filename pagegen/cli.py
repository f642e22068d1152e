import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Optional

import typer  # type: ignore
from rich.console import Console  # type: ignore
from rich.panel import Panel  # type: ignore
from rich.table import Table  # type: ignore

from pagegen.config import DEFAULT_MODEL, config, load_pipeline_config
from pagegen.llm.model_config import ModelConfig
from pagegen.system.artifacts import WorkspaceArtifactSink
from pagegen.utils.extractor import extract as extract_text
from pagegen.utils.logs import get_workspace_path, setup_logger
from pagegen.utils.parser import parse_tool_calls

logger = logging.getLogger(__name__)

app = typer.Typer(help="PageGen - staged AI page generation")
console = Console()


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Cannot read {path}: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def extract(
    file: Path = typer.Argument(..., help="Model output to split into prose and files"),
    write: Optional[Path] = typer.Option(None, "--write", "-w", help="Write extracted files under this directory"),
):
    """Extract prose and generated files from saved model output."""
    result = extract_text(_read(file))

    if result.prose:
        console.print(Panel(result.prose, title="Prose", border_style="blue"))

    if not result.files:
        console.print("[yellow]No files found.[/yellow]")
        return

    table = Table(title=f"Files ({result.strategy.value if result.strategy else 'none'})")
    table.add_column("Filename", style="cyan")
    table.add_column("Language")
    table.add_column("Lines", justify="right")
    for artifact in result.files:
        table.add_row(artifact.filename, artifact.language, str(artifact.content.count("\n") + 1))
    console.print(table)

    if write is not None:
        root = write.resolve()
        for artifact in result.files:
            target = (root / artifact.filename).resolve()
            if root not in target.parents:
                console.print(f"[red]Skipping {artifact.filename}: outside {root}[/red]")
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(artifact.content, encoding="utf-8")
        console.print(f"[green]Wrote {len(result.files)} file(s) to {root}[/green]")


@app.command()
def detect(
    file: Path = typer.Argument(..., help="Model output to scan for tool calls"),
):
    """List the tool calls embedded in saved model output."""
    result = parse_tool_calls(_read(file))
    if not result.calls:
        console.print("[yellow]No tool calls found.[/yellow]")
        return

    table = Table(title="Tool calls")
    table.add_column("Id", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Input")
    for call in result.calls:
        status = "[yellow]partial[/yellow]" if call.partial else "[green]complete[/green]"
        table.add_row(call.id, call.name, status, json.dumps(call.input, ensure_ascii=False))
    console.print(table)


@app.command()
def chat(
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Specify the model to use"),
    commitment: Optional[str] = typer.Option(
        None, "--commitment", "-c", help="quick, thorough or professional"
    ),
    session_id: Optional[str] = typer.Option(None, "--session", "-s", help="Session id to use"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Also print debug logs to stderr"),
):
    """Build a page interactively, stage by stage."""
    from pagegen.llm.litellm_gateway import LiteLLMGateway
    from pagegen.stages.pipeline import StagePipeline

    setup_logger(log_level=logging.DEBUG if verbose else logging.INFO, console=verbose)
    pipeline_config = load_pipeline_config()
    model_settings = dict(config.get("model") or {})
    model_settings["default"] = model or DEFAULT_MODEL
    model_config = ModelConfig.from_dict(model_settings)
    pipeline_config.model = model_config

    pipeline = StagePipeline(
        LiteLLMGateway(model_config),
        config=pipeline_config,
        sink=WorkspaceArtifactSink(get_workspace_path() / "projects"),
    )
    session = session_id or f"cli-{uuid.uuid4().hex[:8]}"

    async def turn(text: str, start: bool = False) -> bool:
        """Run one input; True when a stage finished."""
        finished = False
        async for update in pipeline.process(text, session, commitment=commitment, start=start):
            intent = update.metadata.get("intent")
            if intent == "streaming":
                console.print(update.display_text, end="", markup=False, highlight=False)
            elif intent == "tool_progress":
                console.print(f"\n[dim]{update.display_text}[/dim]")
            elif intent in ("files_progress", "idle"):
                continue
            else:
                if intent in ("welcome", "error"):
                    console.print(update.display_text, markup=False)
                console.print(f"\n[dim]{update.metadata.get('stage')} · {update.progress}%[/dim]")
                if update.metadata.get("commit_id"):
                    console.print(f"[green]Saved version {update.metadata['commit_id']}[/green]")
                finished = update.done and intent in ("advance", "force_advance")
                if finished and update.metadata.get("next_stage"):
                    console.print(
                        f"[bold blue]→ Moving on to {update.metadata['next_stage']}[/bold blue]"
                    )
        return finished

    async def run():
        console.print(f"[bold blue]PageGen[/bold blue] [dim]({model_config.model}, session {session})[/dim]")
        await turn("")
        while True:
            try:
                text = console.input("\n[bold green]You:[/bold green] ")
            except (EOFError, KeyboardInterrupt):
                break
            if text.strip().lower() in ("exit", "quit"):
                break
            # Later stages start on their own once the previous one finishes
            started = False
            while await turn(text, start=started):
                text = ""
                started = True
                state = await pipeline.repository.get(session)
                if state is None or state.stage_state is None:
                    break

    try:
        asyncio.run(run())
    except Exception as e:
        console.print(f"[red]Fatal error: {str(e)}[/red]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
