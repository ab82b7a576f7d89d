"""
ZSP CLI - Command Line Interface

Main entry point for the ZSP sparse attention pattern engine.
Generate, analyze, compare and tune attention masks from the shell.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional

import typer
from rich import box
from rich.align import Align
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from zsp.version import __version__

# Initialize Typer app
app = typer.Typer(
    name="zsp",
    help="ZSP - Z Sparse Patterns: sparse attention mask generation and analysis",
    add_completion=True,
    no_args_is_help=False,
    rich_markup_mode="rich",
)

# Rich console for pretty output
console = Console()


ZSP_LOGO = """
[bold blue]
 ███████╗███████╗██████╗
 ╚══███╔╝██╔════╝██╔══██╗
   ███╔╝ ███████╗██████╔╝
  ███╔╝  ╚════██║██╔═══╝
 ███████╗███████║██║
 ╚══════╝╚══════╝╚═╝
[/bold blue]
"""

ZSP_TAGLINE = "[bold white]Z Sparse Patterns[/bold white] - [dim]Sparse Attention Mask Engine[/dim]"


class OutputFormat(str, Enum):
    """Output format options."""
    text = "text"
    json = "json"


class AnalysisType(str, Enum):
    connectivity = "connectivity"
    locality = "locality"
    efficiency = "efficiency"
    information_flow = "information_flow"
    comprehensive = "comprehensive"


class Strategy(str, Enum):
    conservative = "conservative"
    aggressive = "aggressive"
    balanced = "balanced"


class FlowModeOption(str, Enum):
    auto = "auto"
    exact = "exact"
    sampled = "sampled"


# Shared option types
ParamOption = Annotated[
    Optional[List[str]],
    typer.Option("--param", "-p", help="Family parameter as key=value (repeatable)"),
]
ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Engine config JSON file"),
]
FormatOption = Annotated[
    OutputFormat,
    typer.Option("--format", "-f", help="Output format"),
]


def show_banner() -> None:
    """Display the ZSP banner."""
    console.print(ZSP_LOGO)
    console.print(Align.center(ZSP_TAGLINE))
    console.print(Align.center(f"[dim]Version {__version__}[/dim]\n"))


def show_quick_commands() -> None:
    """Display quick command reference."""
    table = Table(
        title="[bold cyan]Quick Commands[/bold cyan]",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Command", style="green")
    table.add_column("Description", style="white")

    table.add_row("zsp presets", "List built-in pattern presets")
    table.add_row("zsp generate <family|preset>", "Generate a mask and show statistics")
    table.add_row("zsp analyze <family|preset>", "Graph analysis of a mask")
    table.add_row("zsp compare <a> <b> ...", "Compare patterns across lengths")
    table.add_row("zsp tune <family|preset>", "Adapt sparsity to a workload")
    table.add_row("zsp optimize <family|preset>", "Grid-search sparsity for targets")

    console.print(Align.center(table))


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        show_banner()
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version", "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """
    ZSP - Z Sparse Patterns

    Deterministic sparse attention masks and their graph analysis.

    Families: longformer, bigbird, strided, local_global, fixed, random, linformer
    """
    if ctx.invoked_subcommand is None:
        show_banner()
        show_quick_commands()


# =============================================================================
# Helpers
# =============================================================================

def _parse_value(raw: str) -> Any:
    """Parse a --param value: bool, none, int, float, comma list, or string."""
    text = raw.strip()
    lowered = text.lower()
    if lowered in ("true", "yes"):
        return True
    if lowered in ("false", "no"):
        return False
    if lowered in ("none", "null"):
        return None
    if "," in text:
        return [_parse_value(part) for part in text.split(",") if part.strip()]
    for cast in (int, float):
        try:
            return cast(text)
        except ValueError:
            pass
    return text


def parse_params(params: Optional[List[str]]) -> Dict[str, Any]:
    """Turn repeated key=value options into a dict."""
    result: Dict[str, Any] = {}
    for item in params or []:
        if "=" not in item:
            raise typer.BadParameter(f"Expected key=value, got {item!r}", param_hint="--param")
        key, value = item.split("=", 1)
        result[key.strip()] = _parse_value(value)
    return result


def _engine(config: Optional[Path]):
    from zsp.config import EngineConfig
    from zsp.engine.service import PatternEngine

    return PatternEngine(EngineConfig.from_json(config) if config else None)


def _resolve_spec(
    engine,
    target: str,
    params: Dict[str, Any],
    sparsity: Optional[float] = None,
) -> str:
    """Spec id for a preset name or a family name plus parameters."""
    if target in engine.specs:
        if not params and sparsity is None:
            return target
        spec = engine.get_spec(target)
        if params:
            from dataclasses import replace

            from zsp.core.zpattern.patterns import build_family_params

            merged = {**spec.to_dict()["pattern_params"], **params}
            spec = replace(spec, params=build_family_params(spec.family, merged))
        if sparsity is not None:
            spec = spec.with_sparsity(sparsity)
        return engine.register_spec(spec)

    request: Dict[str, Any] = {"type": target, "patternParams": params}
    if sparsity is not None:
        request["sparsityRatio"] = sparsity
    return engine.create_spec(request)


def _fail(error: Exception) -> None:
    console.print(f"[red]Error: {escape(str(error))}[/red]")
    raise typer.Exit(1)


def _print_json(data: Dict[str, Any]) -> None:
    console.print_json(json.dumps(data))


def _fmt(value: Any, digits: int = 4) -> str:
    if value is None:
        return "-"
    if isinstance(value, float):
        return f"{value:.{digits}f}"
    return str(value)


def _fmt_bytes(n: float) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if abs(n) < 1024:
            return f"{n:.1f} {unit}"
        n /= 1024
    return f"{n:.1f} TB"


# =============================================================================
# Commands
# =============================================================================

@app.command()
def presets(
    output_format: FormatOption = OutputFormat.text,
) -> None:
    """
    List built-in pattern presets.

    Examples:
        zsp presets
        zsp presets --format json
    """
    from zsp.core.zpattern.metrics import spec_estimates
    from zsp.core.zpattern.patterns import PRESETS, recommended_use_cases

    if output_format == OutputFormat.json:
        _print_json({name: {**spec.to_dict(), **spec_estimates(spec)} for name, spec in PRESETS.items()})
        return

    table = Table(
        title="[bold cyan]Pattern Presets[/bold cyan]",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Preset", style="green", no_wrap=True)
    table.add_column("Family", style="cyan")
    table.add_column("Length", justify="right")
    table.add_column("Target Sparsity", justify="right")
    table.add_column("Est. Memory Saved", justify="right")
    table.add_column("Est. Speedup", justify="right")
    table.add_column("Use Cases", style="dim")

    for name, spec in PRESETS.items():
        estimates = spec_estimates(spec)
        table.add_row(
            name,
            spec.family.value,
            str(spec.sequence_length),
            f"{spec.sparsity_ratio:.2f}",
            f"{estimates['estimated_memory_reduction']:.0%}",
            f"{estimates['estimated_speedup']:.2f}x",
            ", ".join(recommended_use_cases(spec.family)),
        )
    console.print(table)


@app.command()
def generate(
    target: Annotated[str, typer.Argument(help="Pattern family or preset name")],
    length: Annotated[Optional[int], typer.Option("--length", "-n", help="Sequence length")] = None,
    params: ParamOption = None,
    sparsity: Annotated[Optional[float], typer.Option("--sparsity", "-s", help="Target sparsity")] = None,
    show: Annotated[bool, typer.Option("--show", help="Render the mask as ASCII")] = False,
    max_size: Annotated[int, typer.Option("--max-size", help="Rendering size cap")] = 64,
    output_format: FormatOption = OutputFormat.text,
    config: ConfigOption = None,
) -> None:
    """
    Generate a mask and report its statistics.

    Examples:
        zsp generate longformer -n 1024 -p window_size=128 -p global_indices=0,1
        zsp generate strided-efficient --format json
        zsp generate fixed -n 32 --show
    """
    from zsp.errors import PatternEngineError

    try:
        engine = _engine(config)
        spec_id = _resolve_spec(engine, target, parse_params(params), sparsity)
        pattern = engine.generate_pattern(spec_id, length)
    except PatternEngineError as e:
        _fail(e)

    data = pattern.to_dict()
    if output_format == OutputFormat.json:
        if show:
            data["visualization"] = engine.visualize_pattern(pattern.pattern_id, max_size)
        _print_json(data)
        return

    stats = pattern.statistics
    cost = data["estimated_cost"]
    console.print(Panel.fit(
        f"[bold]Pattern:[/bold] [green]{pattern.spec.display_name}[/green] "
        f"([cyan]{pattern.spec.family.value}[/cyan])\n"
        f"[bold]Sequence Length:[/bold] {pattern.sequence_length}\n"
        f"[bold]Storage:[/bold] {pattern.mask.representation.value}, {_fmt_bytes(pattern.mask.nbytes)}\n"
        f"[bold]Non-zero:[/bold] {stats.non_zero_elements:,} of {stats.total_elements:,}\n"
        f"[bold]Sparsity:[/bold] {stats.sparsity_ratio:.4f} "
        f"[dim](target {pattern.target_sparsity:.2f})[/dim]\n"
        f"[bold]Compute Reduction:[/bold] {stats.compute_reduction_ratio:.4f}\n"
        f"[bold]Attention Memory (est.):[/bold] {_fmt_bytes(cost['sparse_memory_bytes'])} "
        f"[dim](dense {_fmt_bytes(cost['dense_memory_bytes'])})[/dim]",
        title="[bold blue]Generated Pattern[/bold blue]",
        border_style="blue",
    ))
    if show:
        console.print(engine.visualize_pattern(pattern.pattern_id, max_size), highlight=False)


@app.command()
def analyze(
    target: Annotated[str, typer.Argument(help="Pattern family or preset name")],
    analysis_type: Annotated[
        AnalysisType,
        typer.Option("--type", "-t", help="Analysis to run"),
    ] = AnalysisType.comprehensive,
    length: Annotated[Optional[int], typer.Option("--length", "-n", help="Sequence length")] = None,
    params: ParamOption = None,
    flow_mode: Annotated[
        Optional[FlowModeOption],
        typer.Option("--flow-mode", help="Information-flow mode (default from config)"),
    ] = None,
    timeout: Annotated[
        Optional[float],
        typer.Option("--timeout", help="Seconds before flow analysis returns partial results"),
    ] = None,
    output_format: FormatOption = OutputFormat.text,
    config: ConfigOption = None,
) -> None:
    """
    Analyze the attention graph of a mask.

    Examples:
        zsp analyze fixed -n 100 -t locality
        zsp analyze bigbird-base -n 512 --format json
        zsp analyze strided -n 8192 -t information_flow --flow-mode sampled
    """
    from dataclasses import replace

    from zsp.errors import PatternEngineError

    try:
        engine = _engine(config)
        spec_id = _resolve_spec(engine, target, parse_params(params))
        pattern = engine.generate_pattern(spec_id, length)
        flow = replace(engine.analyzer.flow_config, mode=flow_mode.value) if flow_mode else None
        analysis = engine.analyze_pattern(
            pattern.pattern_id, analysis_type.value, flow_config=flow, timeout=timeout
        )
    except PatternEngineError as e:
        _fail(e)

    if output_format == OutputFormat.json:
        _print_json(analysis.to_dict())
        return

    table = Table(
        title=f"[bold cyan]Analysis: {pattern.spec.display_name} @ {pattern.sequence_length}[/bold cyan]",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Group", style="cyan")
    table.add_column("Metric", style="white")
    table.add_column("Value", style="green", justify="right")

    for group, values in analysis.to_dict().items():
        if not isinstance(values, dict):
            continue
        for name, value in values.items():
            if value is not None:
                table.add_row(group, name, _fmt(value))
    console.print(table)

    console.print(Panel(analysis.summary(), title="[bold blue]Summary[/bold blue]", border_style="blue"))
    for finding in analysis.bottlenecks:
        console.print(f"[yellow]⚠ {finding}[/yellow]")
    for recommendation in analysis.recommended_optimizations:
        console.print(f"[green]→ {recommendation}[/green]")


@app.command()
def compare(
    targets: Annotated[List[str], typer.Argument(help="Pattern families or preset names")],
    metrics: Annotated[
        Optional[List[str]],
        typer.Option("--metric", "-m", help="Metric to compare (repeatable)"),
    ] = None,
    lengths: Annotated[
        Optional[List[int]],
        typer.Option("--length", "-n", help="Sequence length to test (repeatable)"),
    ] = None,
    workers: Annotated[int, typer.Option("--workers", "-w", help="Parallel jobs")] = 1,
    output_format: FormatOption = OutputFormat.text,
    config: ConfigOption = None,
) -> None:
    """
    Compare patterns across sequence lengths.

    Metrics: speed, memory, quality, sparsity, efficiency, locality,
    connectivity, reachability.

    Examples:
        zsp compare longformer-base bigbird-base -n 512 -n 1024
        zsp compare fixed local_global -m locality -m memory --format json
    """
    from zsp.errors import PatternEngineError

    try:
        engine = _engine(config)
        engine.comparison.max_workers = max(1, workers)
        spec_ids = [_resolve_spec(engine, target, {}) for target in targets]
        report = engine.compare_patterns(spec_ids, metrics or None, lengths or None)
    except PatternEngineError as e:
        _fail(e)

    labels = dict(zip(spec_ids, targets))
    if output_format == OutputFormat.json:
        data = report.to_dict()
        data["targets"] = labels
        _print_json(data)
        return

    for metric in report.metrics:
        summary = report.summaries[metric]
        table = Table(
            title=f"[bold cyan]{metric.value}[/bold cyan] "
                  f"[dim]({'higher' if metric.higher_is_better else 'lower'} is better)[/dim]",
            box=box.ROUNDED,
            show_header=True,
            header_style="bold magenta",
        )
        table.add_column("Pattern", style="green")
        for n in report.sequence_lengths:
            table.add_column(str(n), justify="right")
        table.add_column("Mean", style="cyan", justify="right")

        for spec_id, row in report.values(metric).items():
            name = labels.get(spec_id, spec_id)
            marker = " ★" if spec_id == summary.best_spec else ""
            table.add_row(
                f"{name}{marker}",
                *[_fmt(row.get(n)) for n in report.sequence_lengths],
                _fmt(summary.per_spec[spec_id]),
            )
        console.print(table)

    console.print()
    for line in report.recommendations:
        for spec_id, name in labels.items():
            line = line.replace(spec_id, name)
        console.print(f"[green]→ {line}[/green]")


@app.command()
def tune(
    target: Annotated[str, typer.Argument(help="Pattern family or preset name")],
    strategy: Annotated[Strategy, typer.Option("--strategy", help="Tuning strategy")] = Strategy.balanced,
    avg_length: Annotated[int, typer.Option("--avg-length", help="Average observed sequence length")] = 512,
    max_length: Annotated[int, typer.Option("--max-length", help="Longest observed sequence length")] = 2048,
    locality: Annotated[float, typer.Option("--locality", help="Observed locality ratio (0-1)")] = 0.7,
    params: ParamOption = None,
    output_format: FormatOption = OutputFormat.text,
    config: ConfigOption = None,
) -> None:
    """
    Adapt a pattern's sparsity (and window) to an observed workload.

    Examples:
        zsp tune longformer-base --max-length 8192 --strategy aggressive
        zsp tune local_global --avg-length 400 --locality 0.9
    """
    from zsp.errors import PatternEngineError

    characteristics = {
        "average_sequence_length": avg_length,
        "max_sequence_length": max_length,
        "locality_ratio": locality,
    }
    try:
        engine = _engine(config)
        base_id = _resolve_spec(engine, target, parse_params(params))
        plan = engine.plan_tuning(base_id, characteristics, strategy.value)
        tuned_id = engine.tune_pattern(base_id, characteristics, strategy.value)
        tuned = engine.get_spec(tuned_id)
    except PatternEngineError as e:
        _fail(e)

    if output_format == OutputFormat.json:
        _print_json({"spec_id": tuned_id, "plan": plan.to_dict(), "spec": tuned.to_dict()})
        return

    adjustments = ", ".join(f"{k}={v}" for k, v in plan.pattern_adjustments.items()) or "none"
    improvements = plan.expected_improvements
    console.print(Panel.fit(
        f"[bold]Pattern:[/bold] [green]{tuned.display_name}[/green]\n"
        f"[bold]Strategy:[/bold] {plan.strategy.value}\n"
        f"[bold]Sparsity:[/bold] {plan.base_sparsity:.2f} → [cyan]{plan.adjusted_sparsity:.4f}[/cyan]\n"
        f"[bold]Pattern Adjustments:[/bold] {adjustments}\n"
        f"[bold]Expected (est.):[/bold] memory -{improvements['memory_reduction']:.0%}, "
        f"speedup {improvements['speedup']:.2f}x, "
        f"quality {improvements['quality_retention']:.0%}",
        title="[bold blue]Tuned Pattern[/bold blue]",
        border_style="blue",
    ))


@app.command()
def optimize(
    target: Annotated[str, typer.Argument(help="Pattern family or preset name")],
    speed: Annotated[float, typer.Option("--speed", help="Weight for speed")] = 1.0,
    memory: Annotated[float, typer.Option("--memory", help="Weight for memory")] = 1.0,
    quality: Annotated[float, typer.Option("--quality", help="Weight for quality")] = 1.0,
    max_sparsity: Annotated[Optional[float], typer.Option("--max-sparsity", help="Penalize sparsity above this")] = None,
    min_quality: Annotated[Optional[float], typer.Option("--min-quality", help="Penalize quality below this")] = None,
    steps: Annotated[int, typer.Option("--steps", help="Grid size")] = 10,
    params: ParamOption = None,
    output_format: FormatOption = OutputFormat.text,
    config: ConfigOption = None,
) -> None:
    """
    Grid-search the sparsity that best fits weighted targets.

    Examples:
        zsp optimize bigbird-base --quality 2 --min-quality 0.2
        zsp optimize longformer --speed 1 --memory 0 --quality 0 --steps 20
    """
    from zsp.errors import PatternEngineError

    targets = {k: v for k, v in (("speed", speed), ("memory", memory), ("quality", quality)) if v}
    constraints = {}
    if max_sparsity is not None:
        constraints["max_sparsity"] = max_sparsity
    if min_quality is not None:
        constraints["min_quality"] = min_quality

    try:
        engine = _engine(config)
        base_id = _resolve_spec(engine, target, parse_params(params))
        spec_id, result = engine.optimize_pattern(base_id, targets, constraints, steps)
    except PatternEngineError as e:
        _fail(e)

    if output_format == OutputFormat.json:
        data = result.to_dict()
        data["spec_id"] = spec_id
        _print_json(data)
        return

    table = Table(
        title="[bold cyan]Sparsity Search[/bold cyan]",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Step", justify="right")
    table.add_column("Sparsity", justify="right")
    table.add_column("Score", justify="right")
    for step in result.history:
        style = "bold green" if step.sparsity == result.best_sparsity else None
        table.add_row(str(step.step), f"{step.sparsity:.4f}", f"{step.score:.4f}", style=style)
    console.print(table)
    console.print(
        f"[green]Best sparsity {result.best_sparsity:.4f} "
        f"(score {result.best_score:.4f}, was {result.base_sparsity:.2f})[/green]"
    )
