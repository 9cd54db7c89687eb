#!/usr/bin/env python3
"""
Gradeline - verified score breakdowns from AI grading narratives.
CLI interface for grading exams, parsing saved narratives and browsing results.
"""

import json
import logging
from contextlib import nullcontext
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from config import Config
from core.dto.grading import GradingReport
from core.grading_engine import GradingEngine
from storage.result_store import ResultStore

console = Console()


def _read_text(path: str) -> str:
    return Path(path).read_text(encoding="utf-8", errors="replace")


def _print_fragment(text: str):
    console.out(text, end="", highlight=False)


def _format_marks(value) -> str:
    if value is None:
        return ""
    return f"{float(value):g}"


def _grade_style(grade: str) -> str:
    return {"A": "bold green", "B": "green", "C": "yellow", "D": "yellow"}.get(grade, "red")


def _breakdown_table(items, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Question", style="cyan", no_wrap=True)
    table.add_column("Marks", justify="right", style="magenta")
    table.add_column("Explanation", style="white")

    for item in items:
        table.add_row(
            escape(item["label"]),
            f"{_format_marks(item['awarded'])}/{_format_marks(item['possible'])}",
            escape(item["explanation"]),
        )
    return table


def print_report(report: GradingReport):
    """Render a GradingReport: breakdown table, totals and reconciliation notes."""
    result = report.result
    console.print(
        _breakdown_table([item.to_dict() for item in result.items], "\n📝 Grade Breakdown")
    )

    style = _grade_style(result.grade.value)
    console.print(
        f"\nTotal: [bold]{result.total_awarded:g}/{result.total_possible:g}[/bold] "
        f"({result.percentage:.1f}%)  Grade: [{style}]{result.grade.value}[/{style}]"
    )

    if report.manifest is not None:
        declared = report.manifest.declared_total
        if declared != result.total_possible:
            console.print(
                f"[yellow]Mark scheme total is {declared:g}, graded questions cover "
                f"{result.total_possible:g}[/yellow]"
            )
    if report.gap_fill_recovered:
        recovered = escape(", ".join(report.gap_fill_recovered))
        console.print(f"[dim]Recovered by follow-up: {recovered}[/dim]")
    if report.missing_entries:
        missing = escape(", ".join(entry.render() for entry in report.missing_entries))
        console.print(f"[yellow]Not graded: {missing}[/yellow]")
    if report.phantom_labels:
        console.print(
            f"[dim]Ignored (not in mark scheme): {escape(', '.join(report.phantom_labels))}[/dim]"
        )
    if report.extraction_rule == "placeholder":
        console.print("[yellow]No per-question marks found in the narrative.[/yellow]")
    console.print()


@click.group()
@click.version_option(version="0.1.0", prog_name="Gradeline")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def cli(verbose):
    """Gradeline - verified score breakdowns from AI grading narratives."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@cli.command()
@click.option(
    "--mark-scheme", "-m", required=True, type=click.Path(exists=True, dir_okay=False),
    help="Mark scheme as a text file",
)
@click.option(
    "--exam", "-e", required=True, type=click.Path(exists=True, dir_okay=False),
    help="Student exam answers as a text file",
)
@click.option("--comments", "-c", default="", help="Additional instructions for the grader")
@click.option(
    "--provider",
    type=click.Choice(["anthropic", "deepseek", "ollama"]),
    default=None,
    help="LLM provider (overrides --profile)",
)
@click.option("--profile", default=None, help="Provider routing profile (default, budget, local)")
@click.option("--no-gap-fill", is_flag=True, help="Do not ask again for missing questions")
@click.option("--no-stream", is_flag=True, help="Wait for the whole narrative instead of streaming")
@click.option("--no-save", is_flag=True, help="Do not store the result")
@click.option("--student", "-s", default=None, help="Student name stored with the result")
def grade(mark_scheme, exam, comments, provider, profile, no_gap_fill, no_stream, no_save, student):
    """Grade a student exam against a mark scheme."""
    from core.service import GradingService

    try:
        Config.ensure_dirs()

        service = GradingService(
            provider=provider,
            use_routing=profile is not None,
            provider_profile=profile,
            gap_fill=False if no_gap_fill else None,
        )

        console.print(f"\n[bold cyan]Grading {escape(Path(exam).name)}...[/bold cyan]\n")

        stream = not no_stream
        on_fragment = _print_fragment if stream else None
        waiting = nullcontext() if stream else console.status("Waiting for the grader...", spinner="dots")

        with waiting:
            result = service.grade_exam(
                _read_text(mark_scheme),
                _read_text(exam),
                additional_comments=comments,
                stream=stream,
                on_fragment=on_fragment,
                save=not no_save,
                student_name=student,
                mark_scheme_filename=Path(mark_scheme).name,
                student_exam_filename=Path(exam).name,
            )

        if stream:
            console.print()

        if not result.success:
            console.print(f"\n[bold red]Error:[/bold red] {escape(str(result.error))}\n")
            raise click.Abort()

        print_report(result.data["report"])
        if "result_id" in result.data:
            console.print(f"Saved as [cyan]{result.data['result_id']}[/cyan]")
            console.print(f"  • gradeline show {result.data['result_id']} - View it again\n")

    except click.Abort:
        raise
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {escape(str(e))}\n")
        raise click.Abort()


@cli.command()
@click.argument("narrative_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
def parse(narrative_file, as_json):
    """Extract and verify marks from a saved grading narrative (no LLM calls)."""
    try:
        report = GradingEngine().grade(_read_text(narrative_file))

        if as_json:
            data = report.to_dict()
            data.pop("narrative")
            click.echo(json.dumps(data, indent=2))
            return

        console.print(f"[dim]Extraction rule: {report.extraction_rule}[/dim]")
        print_report(report)

    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {escape(str(e))}\n")
        raise click.Abort()


@cli.command()
def results():
    """List saved grading results."""
    try:
        summaries = ResultStore().list_results()

        if not summaries:
            console.print("\n[yellow]No saved results. Run 'gradeline grade' first.[/yellow]\n")
            return

        table = Table(title="\n📊 Saved Results")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Date", style="dim")
        table.add_column("Student", style="white")
        table.add_column("Marks", justify="right", style="magenta")
        table.add_column("%", justify="right")
        table.add_column("Grade", justify="center")

        for summary in summaries:
            grade = summary.get("grade") or ""
            style = _grade_style(grade)
            percentage = summary.get("percentage")
            table.add_row(
                summary["id"],
                summary.get("created_at", ""),
                escape(summary.get("student_name") or ""),
                f"{_format_marks(summary.get('total_marks'))}/"
                f"{_format_marks(summary.get('total_possible_marks'))}",
                f"{percentage:.1f}" if percentage is not None else "",
                f"[{style}]{grade}[/{style}]",
            )

        console.print(table)
        console.print(f"\nTotal: {len(summaries)} results\n")

    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {escape(str(e))}\n")
        raise click.Abort()


@cli.command()
@click.argument("result_id")
@click.option("--narrative", is_flag=True, help="Also print the full grading narrative")
def show(result_id, narrative):
    """Show one saved grading result."""
    try:
        document = ResultStore().load(result_id)
    except KeyError:
        console.print(f"\n[bold red]Error:[/bold red] Result '{escape(result_id)}' not found\n")
        raise click.Abort()
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {escape(str(e))}\n")
        raise click.Abort()

    console.print(f"\n[bold cyan]{escape(document.get('student_name') or 'Unnamed student')}[/bold cyan]")
    console.print(
        f"[dim]{document.get('created_at', '')}  "
        f"{escape(document.get('mark_scheme_filename') or '')} / {escape(document.get('student_exam_filename') or '')}[/dim]"
    )

    console.print(_breakdown_table(document.get("grade_breakdown", []), "\n📝 Grade Breakdown"))

    grade = document.get("grade", "")
    style = _grade_style(grade)
    console.print(
        f"\nTotal: [bold]{_format_marks(document.get('total_marks'))}/"
        f"{_format_marks(document.get('total_possible_marks'))}[/bold] "
        f"({document.get('percentage', 0):.1f}%)  Grade: [{style}]{grade}[/{style}]"
    )

    missing = (document.get("report") or {}).get("missing_entries") or []
    if missing:
        console.print(f"[yellow]Not graded: {escape(', '.join(missing))}[/yellow]")

    if narrative:
        from rich.markdown import Markdown

        console.print()
        console.print(Markdown(document.get("content", "")))
    console.print()


if __name__ == "__main__":
    cli()
