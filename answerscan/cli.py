"""
CLI Interface
=============
Command-line interface for the answer-sheet transcriber.

Usage:
    python -m answerscan transcribe <pdf_or_images...> [options]
    python -m answerscan transcribe --text page1.txt page2.txt
    python -m answerscan key <answer_key.pdf|txt>
    python -m answerscan evaluate <answers.json> <answer_key.pdf|txt>
    python -m answerscan info <pdf_path>
    python -m answerscan serve [options]
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click
import fitz  # PyMuPDF
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from . import __version__
from .answer_key import AnswerKeyFormatError, load_answer_key
from .engine import TranscriberConfig, TranscriptionEngine
from .evaluator import Evaluator, LLMAnswerScorer, RequestValidationError
from .llm_client import ChatCompletionClient
from .rasterizer import PdfRasterizer, is_image_file

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="answerscan")
def cli():
    """Answer Sheet Transcriber: scanned exam answers to a scored transcript."""
    pass


@cli.command()
@click.argument("sources", nargs=-1, required=True, type=click.Path(exists=True))
@click.option(
    "--text", "as_text",
    is_flag=True,
    default=False,
    help="Treat SOURCES as already-extracted page text files, in page order",
)
@click.option(
    "--output", "-o",
    default=None,
    help="Write the full transcript result JSON to this file",
)
@click.option(
    "--dpi",
    default=None,
    type=int,
    help="Rasterization resolution for PDF pages",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.option(
    "--log-file",
    default=None,
    help="Path to log file",
)
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only the transcript JSON to stdout (for programmatic use)",
)
def transcribe(
    sources: tuple[str, ...],
    as_text: bool,
    output: str,
    dpi: int,
    log_level: str,
    log_file: str,
    json_output: bool,
):
    """Transcribe a scanned PDF, page images, or page text files."""

    if json_output:
        # Suppress console output for JSON mode
        log_level = "ERROR"

    config = TranscriberConfig.from_env(
        dpi=dpi,
        log_level=log_level,
        log_file=log_file,
    )

    if not json_output:
        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]Answer Sheet Transcriber v{__version__}[/]\n"
                f"[dim]Transcribing: {', '.join(os.path.basename(s) for s in sources)}[/]",
                border_style="cyan",
            )
        )
        console.print()

    try:
        engine = TranscriptionEngine(config)

        if json_output:
            result = _run_transcription(engine, sources, as_text)
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("Transcribing pages...", total=None)

                def on_page(page_num: int, total: int):
                    progress.update(task, completed=page_num, total=total)

                result = _run_transcription(engine, sources, as_text, on_page)

        if output:
            engine.save(result, output)

        if json_output:
            print(json.dumps(result.to_response(), indent=2, ensure_ascii=False))
        else:
            _display_transcript(result)

    except click.UsageError:
        raise
    except (FileNotFoundError, RuntimeError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/] {e}")
        if log_level == "DEBUG":
            console.print_exception()
        sys.exit(1)


def _run_transcription(engine, sources, as_text, progress_callback=None):
    if as_text:
        texts = [Path(s).read_text(encoding="utf-8") for s in sources]
        return engine.transcribe_pages(texts, source=", ".join(sources))

    if all(is_image_file(s) for s in sources):
        return engine.transcribe_images(list(sources), progress_callback)

    if len(sources) != 1:
        raise click.UsageError("Give one PDF, or one or more page images")
    return engine.transcribe_pdf(sources[0], progress_callback)


@cli.command()
@click.argument("key_path", type=click.Path(exists=True))
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only the answer-key JSON to stdout",
)
def key(key_path: str, json_output: bool):
    """Parse an answer key (PDF or text) into grading logic per question."""

    try:
        answer_key = load_answer_key(key_path)
    except AnswerKeyFormatError as e:
        console.print(f"[red]Invalid answer key:[/] {e}")
        sys.exit(1)
    except (FileNotFoundError, RuntimeError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    if json_output:
        print(json.dumps(
            {number: entry.model_dump() for number, entry in answer_key.items()},
            indent=2,
            ensure_ascii=False,
        ))
        return

    table = Table(title="Answer Key", border_style="cyan")
    table.add_column("Question", style="bold", justify="right")
    table.add_column("Grading Logic")
    table.add_column("Diagram", justify="center")

    for number, entry in answer_key.items():
        table.add_row(
            number,
            entry.logic,
            "[yellow]✓[/]" if entry.diagram else "",
        )

    console.print()
    console.print(table)
    console.print()


@cli.command()
@click.argument("answers_path", type=click.Path(exists=True))
@click.argument("key_path", type=click.Path(exists=True))
@click.option(
    "--offline",
    is_flag=True,
    default=False,
    help="Skip the scoring model and use rule-based scoring only",
)
@click.option("--workers", "-j", default=None, type=int, help="Concurrent scoring calls")
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only the evaluation JSON to stdout",
)
def evaluate(
    answers_path: str,
    key_path: str,
    offline: bool,
    workers: int,
    json_output: bool,
):
    """Score a transcript JSON (answers list) against an answer key."""

    config = TranscriberConfig.from_env(
        max_workers=workers,
        log_level="ERROR" if json_output else None,
    )

    with open(answers_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    answers = data.get("answers") if isinstance(data, dict) else data

    scorer = None
    if not offline:
        scorer = LLMAnswerScorer(ChatCompletionClient(
            api_key=config.api_key,
            model=config.scoring_model,
            base_url=config.api_base_url,
            timeout=config.request_timeout,
        ))

    try:
        answer_key = load_answer_key(key_path)
        report = Evaluator(scorer, max_workers=config.max_workers).evaluate_answer_sheet(
            answers, answer_key
        )
    except (AnswerKeyFormatError, RequestValidationError) as e:
        console.print(f"[red]Invalid request:[/] {e}")
        sys.exit(1)

    if json_output:
        print(json.dumps(report.to_response(), indent=2, ensure_ascii=False))
        return

    _display_evaluation(report)


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=3000, type=int, help="Server port")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
def serve(host: str, port: int, debug: bool):
    """Start the HTTP service."""
    from .server import run_server

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Answer Sheet Transcriber Service[/]\n"
            f"[dim]Starting on {host}:{port}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug)


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True))
@click.option("--dpi", default=None, type=int, help="Rasterization resolution to preview")
def info(pdf_path: str, dpi: int):
    """Show how an answer-sheet PDF will be transcribed."""

    config = TranscriberConfig.from_env(dpi=dpi)
    rasterizer = PdfRasterizer(dpi=config.dpi)

    try:
        total_pages = rasterizer.page_count(pdf_path)
        with fitz.open(pdf_path) as doc:
            first = doc[0].rect
            text_pages = sum(1 for page in doc if page.get_text().strip())
    except (FileNotFoundError, RuntimeError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    width_px = round(first.width / 72 * config.dpi)
    height_px = round(first.height / 72 * config.dpi)

    console.print()
    table = Table(title="Answer Sheet", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")

    table.add_row("File", os.path.basename(pdf_path))
    table.add_row("Pages to Transcribe", str(total_pages))
    table.add_row("Model Calls", str(total_pages))
    table.add_row("Page Render", f"{width_px} x {height_px} px at {config.dpi} dpi")
    table.add_row(
        "Text Layer",
        f"[yellow]{text_pages} page(s)[/]" if text_pages else "none (scanned)",
    )
    table.add_row(
        "File Size",
        f"{os.path.getsize(pdf_path) / 1024 / 1024:.2f} MB",
    )

    console.print(table)
    console.print()


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_transcript(result):
    """Display transcript and page outcomes as tables."""
    console.print()

    table = Table(title="Transcript", border_style="cyan")
    table.add_column("#", style="bold", justify="right")
    table.add_column("Answer")
    table.add_column("Pages", justify="center")

    pages_by_number = {
        r.question_number: (r.page_start, r.page_end) for r in result.records
    }
    for entry in result.answers:
        start, end = pages_by_number.get(entry.margin_number, (0, 0))
        table.add_row(
            str(entry.margin_number),
            entry.answer,
            str(start) if start == end else f"{start}-{end}",
        )
    console.print(table)
    console.print()

    _display_validation_table(result.validation.model_dump())

    v = result.version
    console.print(
        f"[dim]Transcriber v{v.transcriber_version} | "
        f"Model: {v.vision_model} | "
        f"Pages: {result.document.total_pages} | "
        f"Answers: {len(result.answers)} | "
        f"Timestamp: {v.timestamp}[/]"
    )
    console.print()


def _display_validation_table(validation: dict):
    """Display validation report as a rich table."""
    table = Table(title="Validation Report", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_column("Status", justify="center")

    def status_icon(count, threshold=0):
        if count <= threshold:
            return "[green]✓[/]"
        return "[red]✗[/]"

    def warn_icon(count):
        if count == 0:
            return "[green]✓[/]"
        return "[yellow]⚠[/]"

    total_pages = validation.get("total_pages", 0)
    rate = validation.get("page_success_rate", 0)
    table.add_row(
        "Pages Read",
        f"{total_pages} ({rate}%)",
        "[green]✓[/]" if rate >= 100 else "[yellow]⚠[/]",
    )

    failed = validation.get("failed_pages", [])
    table.add_row("Failed Pages", str(len(failed)), status_icon(len(failed)))

    empty = validation.get("empty_pages", [])
    table.add_row("Empty Pages", str(len(empty)), warn_icon(len(empty)))

    total = validation.get("total_answers", 0)
    table.add_row(
        "Answers",
        str(total),
        "[green]✓[/]" if total > 0 else "[red]✗[/]",
    )

    missing = validation.get("missing_question_numbers", [])
    table.add_row(
        "Missing Question Numbers",
        ", ".join(map(str, missing)) or "0",
        warn_icon(len(missing)),
    )

    recurring = validation.get("recurring_question_numbers", [])
    table.add_row(
        "Recurring Question Numbers",
        ", ".join(map(str, recurring)) or "0",
        warn_icon(len(recurring)),
    )

    rejected = validation.get("rejected_numbers", [])
    table.add_row("Rejected Numbers", str(len(rejected)), warn_icon(0))

    table.add_row(
        "Discarded Preamble Lines",
        str(validation.get("discarded_preamble_lines", 0)),
        warn_icon(0),
    )

    dropped = validation.get("dropped_empty_answers", [])
    table.add_row("Dropped Empty Answers", str(len(dropped)), warn_icon(len(dropped)))

    multi_page = validation.get("multi_page_answers", [])
    table.add_row("Multi-Page Answers", str(len(multi_page)), warn_icon(0))

    console.print(table)
    console.print()


def _display_evaluation(report):
    """Display per-answer scores and the summary."""
    console.print()

    table = Table(title="Evaluation", border_style="cyan")
    table.add_column("Question", style="bold", justify="right")
    table.add_column("Mark", justify="right")
    table.add_column("Method")
    table.add_column("Reason")

    for result in report.results:
        method = result.evaluation_method
        if result.error:
            method = f"[yellow]{method}[/]"
        table.add_row(result.question_number, result.mark, method, result.reason)

    console.print(table)
    console.print()

    summary = report.summary
    console.print(
        f"[bold]Total:[/] {summary.total_marks} across "
        f"{summary.total_questions} questions ({summary.percentage}%)"
    )
    console.print()


# ─── Entry point (for python -m answerscan.cli) ───────────────────────────────


if __name__ == "__main__":
    cli()
