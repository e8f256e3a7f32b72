"""Typer CLI for promptlab."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from promptlab.config import PROVIDERS, get_db_path
from promptlab.errors import PromptLabError
from promptlab.models.base import DoneEvent, ErrorEvent, TokenEvent
from promptlab.models.registry import create_adapter
from promptlab.storage.repository import Repository, initialize_schema

app = typer.Typer(name="promptlab", help="Prompt workspace: run prompts against Ollama, OpenAI, and Anthropic")
console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", help="Log debug output")):
    """Prompt workspace CLI."""
    from dotenv import load_dotenv
    load_dotenv()
    _configure_logging(verbose)


def _fail(message: str) -> None:
    console.print(f"[red]{escape(message)}[/]")
    raise typer.Exit(1)


def _check_provider(provider: str) -> None:
    if provider not in PROVIDERS:
        _fail(f"Unknown provider: {provider}. Choose from {', '.join(PROVIDERS)}")


def _build_gateway(repository: Repository):
    from promptlab.runner.gateway import GenerationGateway
    return GenerationGateway(repository, adapter_factory=create_adapter)


def _parse_vars(pairs: Optional[list[str]]) -> dict[str, str]:
    values = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name:
            _fail(f"Invalid --var {pair!r}, expected name=value")
        values[name] = value
    return values


def _format_cost(cost: Optional[float]) -> str:
    return "free" if cost is None else f"${cost:.6f}"


@app.command()
def init():
    """Create the workspace database."""
    try:
        initialize_schema()
    except Exception as e:
        _fail(f"Error initializing database: {e}")
    console.print(f"[green]✓[/] Database initialized at {get_db_path()}")


@app.command(name="add-key")
def add_key(
    provider: str = typer.Argument(..., help="openai or anthropic"),
    key: str = typer.Argument(..., help="API key"),
    label: Optional[str] = typer.Option(None, "--label", "-l", help="Display label"),
):
    """Encrypt and store a provider API key."""
    from promptlab.credentials import encrypt, mask_secret

    _check_provider(provider)
    try:
        Repository().create_api_key(provider, encrypt(key), label=label)
    except PromptLabError as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Stored {provider} key {mask_secret(key)}")


@app.command()
def models(provider: str = typer.Argument(..., help="Provider to query")):
    """List available models for a provider."""
    from promptlab.models.registry import list_models

    _check_provider(provider)
    try:
        entries = asyncio.run(list_models(provider))
    except PromptLabError as e:
        _fail(str(e))

    table = Table(title=f"{provider} models")
    table.add_column("Model", style="cyan")
    table.add_column("Size", justify="right")
    for entry in entries:
        size = entry.get("size")
        table.add_row(entry["name"], f"{size / 1e9:.1f} GB" if size else "")
    console.print(table)


@app.command()
def generate(
    prompt_id: str = typer.Argument(..., help="Prompt to run"),
    provider: str = typer.Option("ollama", "--provider", "-p", help="ollama, openai, or anthropic"),
    model: str = typer.Option(..., "--model", "-m", help="Model name"),
    stream: bool = typer.Option(True, "--stream/--no-stream", help="Print tokens as they arrive"),
    var: Optional[list[str]] = typer.Option(None, "--var", help="Variable binding name=value"),
):
    """Run a stored prompt and save the response."""
    from promptlab.prompts.templates import substitute_variables
    from promptlab.runner.gateway import GenerationRequest

    _check_provider(provider)
    repository = Repository()
    prompt = repository.get_prompt(prompt_id)
    if prompt is None:
        _fail(f"Prompt not found: {prompt_id}")

    values = _parse_vars(var)
    request = GenerationRequest(
        prompt_id=prompt.id,
        model=model,
        content=substitute_variables(prompt.content, values),
        provider=provider,
        system_prompt=substitute_variables(prompt.system_prompt, values) if prompt.system_prompt else None,
        stream=stream,
    )
    gateway = _build_gateway(repository)

    if not stream:
        try:
            stored = asyncio.run(gateway.run(request))
        except PromptLabError as e:
            _fail(str(e))
        console.print(stored.content, markup=False, highlight=False)
        console.print(
            f"\n[green]Saved response {stored.id}[/] | tokens: {stored.token_count} | "
            f"cost: {_format_cost(stored.cost_estimate)} | time: {stored.execution_time:.2f}s"
        )
        return

    async def _consume() -> Optional[DoneEvent | ErrorEvent]:
        events = await gateway.open_stream(request)
        async for event in events:
            if isinstance(event, TokenEvent):
                console.print(event.text, end="", markup=False, highlight=False, soft_wrap=True)
            else:
                return event
        return None

    try:
        terminal = asyncio.run(_consume())
    except PromptLabError as e:
        _fail(str(e))

    console.print()
    if isinstance(terminal, DoneEvent):
        console.print(
            f"[green]Saved response {terminal.response_id}[/] | "
            f"tokens: {terminal.input_tokens + terminal.output_tokens} | "
            f"cost: {_format_cost(terminal.cost_estimate)}"
        )
    else:
        _fail(terminal.message if terminal else "Stream ended without a result")


@app.command(name="batch-run")
def batch_run(
    prompt_id: str = typer.Argument(..., help="Prompt whose test cases to run"),
    provider: str = typer.Option("ollama", "--provider", "-p", help="ollama, openai, or anthropic"),
    model: str = typer.Option(..., "--model", "-m", help="Model name"),
):
    """Run every test case of a prompt and report pass/fail."""
    from promptlab.runner.executor import run_batch

    _check_provider(provider)
    repository = Repository()
    gateway = _build_gateway(repository)
    total = len(repository.list_test_cases(prompt_id))

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task(f"{provider}/{model}", total=total or None)

        def _advance(result) -> None:
            progress.update(task, advance=1, description=f"{provider}/{model} {escape(result.test_case_name)}")

        try:
            results = asyncio.run(
                run_batch(gateway, repository, prompt_id, provider, model, on_result=_advance)
            )
        except PromptLabError as e:
            progress.stop()
            _fail(str(e))

    table = Table(title=f"Batch run: {provider}/{model}")
    table.add_column("Test case", style="cyan")
    table.add_column("Result")
    table.add_column("Time", justify="right")
    table.add_column("Output")

    for r in results:
        if r.passed is None:
            status = "[dim]not evaluated[/]"
        elif r.passed:
            status = "[green]✓ pass[/]"
        else:
            status = "[red]✗ fail[/]"
        elapsed = f"{r.execution_time:.2f}s" if r.execution_time is not None else "-"
        output = r.output if len(r.output) <= 60 else r.output[:57] + "..."
        table.add_row(escape(r.test_case_name), status, elapsed, escape(output.replace("\n", " ")))

    console.print(table)
    passed = sum(1 for r in results if r.passed)
    evaluated = sum(1 for r in results if r.passed is not None)
    console.print(f"  Passed {passed}/{evaluated} evaluated cases ({len(results)} total)")


@app.command(name="load-prompts")
def load_prompts(path: Path = typer.Argument(..., help="YAML prompt bank file")):
    """Create prompts and test cases from a YAML bank."""
    from promptlab.prompts.loader import import_bank

    if not path.exists():
        _fail(f"File not found: {path}")
    try:
        prompt_ids = import_bank(Repository(), path)
    except (ValueError, KeyError) as e:
        _fail(f"Invalid prompt bank: {e}")
    console.print(f"[green]✓[/] Loaded {len(prompt_ids)} prompts")
    for prompt_id in prompt_ids:
        console.print(f"  {prompt_id}")


@app.command()
def responses(
    prompt_id: Optional[str] = typer.Option(None, "--prompt-id", help="Filter by prompt"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Filter by model name"),
    limit: int = typer.Option(20, "--limit", help="Maximum rows"),
):
    """List stored responses, newest first."""
    rows = Repository().list_responses(prompt_id=prompt_id, model_name=model, limit=limit)
    if not rows:
        console.print("[yellow]No responses found.[/]")
        return

    table = Table(title="Responses")
    table.add_column("ID", style="cyan")
    table.add_column("Model")
    table.add_column("Source")
    table.add_column("Tokens", justify="right")
    table.add_column("Time", justify="right")
    table.add_column("Cost", justify="right")
    for r in rows:
        table.add_row(
            r.id,
            r.model_name,
            r.source,
            str(r.token_count) if r.token_count is not None else "",
            f"{r.execution_time:.2f}s" if r.execution_time is not None else "",
            _format_cost(r.cost_estimate),
        )
    console.print(table)


@app.command(name="cost-estimate")
def cost_estimate(
    model: str = typer.Argument(..., help="Model name"),
    input_tokens: int = typer.Argument(..., min=0),
    output_tokens: int = typer.Argument(..., min=0),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Pricing family"),
):
    """Estimate the cost of one call."""
    from promptlab.runner.metrics import estimate_cost

    try:
        cost = estimate_cost(model, input_tokens, output_tokens, provider=provider)
    except ValueError as e:
        _fail(str(e))
    console.print(f"{model}: {input_tokens} in / {output_tokens} out -> [green]${cost:.6f}[/]")


@app.command()
def variables(prompt_id: str = typer.Argument(..., help="Prompt to inspect")):
    """List the {{placeholders}} a prompt needs."""
    from promptlab.prompts.templates import extract_variables

    prompt = Repository().get_prompt(prompt_id)
    if prompt is None:
        _fail(f"Prompt not found: {prompt_id}")
    names = extract_variables(prompt.content)
    if prompt.system_prompt:
        names = list(dict.fromkeys(names + extract_variables(prompt.system_prompt)))
    if not names:
        console.print("[yellow]No variables.[/]")
        return
    for name in names:
        console.print(name)


if __name__ == "__main__":
    app()
