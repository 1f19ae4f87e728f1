"""CLI application using Typer for the meta-analysis engine."""

import json
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from ..config.settings import settings
from ..core.errors import MetaAnalysisError
from ..core.models import HarmonizationFailure, HarmonizedEffect, MetaAnalysisResult
from ..io.loader import load_studies
from ..meta.analyzer import MetaAnalyzer
from ..meta.harmonizer import harmonize_all
from ..meta.random_effects import RandomEffectsFitter
from ..utils.logging import get_logger, set_log_level

app = typer.Typer(
    name="hetmeta",
    help="Random-effects meta-analysis of SMD and odds-ratio studies",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override the configured log level"),
) -> None:
    """Random-effects meta-analysis of SMD and odds-ratio studies."""
    if log_level:
        try:
            set_log_level(log_level)
        except ValueError as exc:
            raise typer.BadParameter(str(exc), param_hint="--log-level")


def _effects_table(
    effects: List[HarmonizedEffect],
    level: float,
    weights: Optional[List[float]] = None,
) -> Table:
    table = Table(title="Harmonized effect sizes (Hedges' g)")
    table.add_column("Study", style="cyan")
    table.add_column("Measure")
    table.add_column("n", justify="right")
    table.add_column("g", justify="right")
    table.add_column(f"{level:.0%} CI", justify="right")
    if weights is not None:
        table.add_column("Weight (%)", justify="right")
    for i, es in enumerate(effects):
        ci_low, ci_high = es.confidence_interval(level)
        row = [
            es.label + (" *" if es.group_sizes_estimated else ""),
            es.measure.value,
            f"{es.n:g}",
            f"{es.effect:.3f}",
            f"[{ci_low:.3f}, {ci_high:.3f}]",
        ]
        if weights is not None:
            row.append(f"{weights[i]:.1f}")
        table.add_row(*row)
    return table


def _load(studies_csv: Path):
    try:
        return load_studies(studies_csv)
    except ValueError as exc:
        # also covers pydantic ValidationError for malformed rows
        console.print(f"[red]Error reading {studies_csv}:[/red] {exc}")
        raise typer.Exit(1)


def _print_failures(failures: List[HarmonizationFailure]) -> None:
    for failure in failures:
        console.print(f"[yellow]Excluded {failure.label or failure.study_id}: {failure.message}[/yellow]")


def _print_result(result: MetaAnalysisResult, analyzer: MetaAnalyzer) -> None:
    model = result.model
    console.print(_effects_table(result.effects, model.level, list(model.weights)))
    if any(es.group_sizes_estimated for es in result.effects):
        console.print("[dim]* group sizes estimated by splitting the total evenly[/dim]")

    console.print("\n[bold]Heterogeneity[/bold]")
    if model.degenerate:
        console.print("  Not estimable with a single study")
    else:
        q_p = f"{model.q_pvalue:.3f}" if model.q_pvalue is not None else "n/a"
        console.print(
            f"  tau² = {model.tau2:.3f}; Q = {model.q:.2f}, df = {model.df} (P = {q_p}); "
            f"I² = {model.i2:.1f}% ({model.heterogeneity_interpretation})"
        )
        if not model.converged:
            console.print(f"[yellow]  REML did not converge after {model.iterations} iterations[/yellow]")

    console.print("\n[bold]Overall effect[/bold]")
    stat = "z" if model.degenerate else "t"
    console.print(
        f"  g = {model.pooled_effect:.3f} [{model.ci_low:.3f}, {model.ci_high:.3f}] "
        f"({model.level:.0%} CI); {stat} = {model.test_statistic:.3f}, P = {model.p_value:.3f}"
    )
    if model.prediction_interval_low is not None:
        console.print(
            f"  Prediction interval: [{model.prediction_interval_low:.3f}, {model.prediction_interval_high:.3f}]"
        )
    console.print(f"  Total participants: {result.total_participants:g}")

    if result.influence:
        table = Table(title="Baujat diagnostics")
        table.add_column("Study", style="cyan")
        table.add_column("Contribution to Q", justify="right")
        table.add_column("Influence", justify="right")
        table.add_column("Outlier")
        for _, row in analyzer.baujat_plot_data(result).iterrows():
            table.add_row(row["study"], f"{row['x']:.3f}", f"{row['y']:.3f}", "yes" if row["outlier"] else "")
        console.print()
        console.print(table)
    elif result.influence_note:
        console.print(f"\n[dim]Influence diagnostics unavailable: {result.influence_note}[/dim]")


@app.command()
def harmonize(
    studies_csv: Path = typer.Argument(..., help="CSV file with one row per study", exists=True),
    skip_failures: bool = typer.Option(False, "--skip-failures", help="Exclude studies that cannot be harmonized"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write harmonized effects as JSON"),
) -> None:
    """Convert every study to Hedges' g and its variance."""
    studies = _load(studies_csv)
    try:
        effects, failures = harmonize_all(studies, skip_failures=skip_failures)
    except MetaAnalysisError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)
    _print_failures(failures)
    console.print(_effects_table(effects, settings.confidence_level))
    if output:
        payload = {
            "effects": [es.model_dump(mode="json") for es in effects],
            "failures": [f.model_dump(mode="json") for f in failures],
        }
        output.write_text(json.dumps(payload, indent=2))
        console.print(f"[green]✓ Harmonized effects saved to {output}[/green]")


@app.command()
def analyze(
    studies_csv: Path = typer.Argument(..., help="CSV file with one row per study", exists=True),
    skip_failures: bool = typer.Option(False, "--skip-failures", help="Exclude studies that cannot be harmonized"),
    level: Optional[float] = typer.Option(
        None, "--level", min=0.5, max=0.999, help="Confidence level (defaults to HETMETA_CONFIDENCE_LEVEL)"
    ),
    strict: bool = typer.Option(False, "--strict", help="Fail if REML does not converge"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the result records as JSON"),
) -> None:
    """Fit the random-effects model and report heterogeneity and influence."""
    console.print("[bold blue]Running meta‑analysis[/bold blue]")
    studies = _load(studies_csv)
    analyzer = MetaAnalyzer(fitter=RandomEffectsFitter(level=level, strict_convergence=strict or None))
    try:
        result = analyzer.run(studies, skip_failures=skip_failures)
    except MetaAnalysisError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(1)
    _print_failures(result.failures)
    _print_result(result, analyzer)
    if output:
        output.write_text(result.model_dump_json(indent=2))
        console.print(f"[green]✓ Results saved to {output}[/green]")


if __name__ == "__main__":
    app()
