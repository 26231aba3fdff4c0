"""Command-line interface for pagegate.

Provides:
- `process`: Extract text and fields from a PDF/image into a result JSON.
- `redact`: Redact fields of a result JSON into a new PDF/PNG with an audit.
- `run`: Classify, verify interactively when needed, extract and redact.
- `feedback-stats` / `feedback-claim`: Inspect and claim training feedback.
- `serve`: Launch the HTTP service.
"""

from pathlib import Path
from typing import List, Optional

import orjson
import typer
from rich import print
from rich.table import Table
from tqdm import tqdm

from .audit import build_audit, write_audit
from .context import build_context
from .feedback import JsonlFeedbackStore, claim_for_training, feedback_stats
from .models import PipelineResult, RedactionRequest
from .ocr import PdfPageRenderer, TesseractExtractor
from .pipeline.compositor import redact_document, select_for_redaction
from .pipeline.config import RunConfig
from .pipeline.gate import ClassificationWorkflow, Phase
from .pipeline.orchestration import guess_mime, process_path
from .taxonomy import load_taxonomy

app = typer.Typer(add_completion=False, help="pagegate document gate")


def _progress_bar(desc: str):
    bar = tqdm(total=0, desc=desc, unit="page")

    def sink(message: str, done: int, total: int) -> None:
        if bar.total != total:
            bar.total = total
        bar.n = done
        bar.set_postfix_str(message)
        bar.refresh()

    return bar, sink


def _parse_rgb(value: str) -> tuple:
    parts = [int(p) for p in value.split(",")]
    if len(parts) != 3 or not all(0 <= p <= 255 for p in parts):
        raise typer.BadParameter("expected R,G,B with values 0-255")
    return tuple(parts)


def _dump(model) -> bytes:
    return orjson.dumps(model.model_dump(mode="json", by_alias=True), option=orjson.OPT_INDENT_2)


@app.command()
def process(
    input: str = typer.Option(..., "--input", "-i", help="Input PDF or image"),
    output: str = typer.Option(..., "--output", "-o", help="Result JSON path"),
    document_type: str = typer.Option("", help="Document type for taxonomy patterns"),
    taxonomy: Optional[str] = typer.Option(None, help="Taxonomy name or YAML/JSON path"),
    dpi: int = typer.Option(300, help="Rasterization DPI for PDFs"),
    psm: int = typer.Option(3, help="Tesseract PSM"),
    lang: str = typer.Option("eng", help="Tesseract language"),
    workers: int = typer.Option(1, help="Pages extracted concurrently"),
    preprocess: bool = typer.Option(
        False, "--preprocess/--no-preprocess", help="Enhance OCR via preprocessing"
    ),
):
    """Extract every page of INPUT and write the aggregated result JSON."""
    cfg = RunConfig(
        lang=lang, psm=psm, dpi=dpi, workers=workers, preprocess=preprocess,
        taxonomy_path=taxonomy, use_llm=False,
    )
    extractor = TesseractExtractor(cfg, load_taxonomy(taxonomy) if document_type else None)
    bar, sink = _progress_bar("extract")
    try:
        res = process_path(input, PdfPageRenderer(dpi=dpi), extractor, cfg, document_type, sink)
    finally:
        bar.close()
    Path(output).write_bytes(_dump(res))
    print(f"[green]Pages:[/green] {len(res.succeeded_pages)}/{res.page_count} succeeded")
    print(f"[green]Result:[/green] {output}")


@app.command()
def redact(
    input: str = typer.Option(..., "--input", "-i", help="Source PDF or image"),
    result: str = typer.Option(..., "--result", "-r", help="Result JSON from `process`"),
    output: str = typer.Option(..., "--output", "-o", help="Redacted output path"),
    field_id: Optional[List[str]] = typer.Option(
        None, "--field-id", "-f", help="Field id to redact (repeatable)"
    ),
    fill: str = typer.Option("0,0,0", help="Fill colour as R,G,B"),
    padding: float = typer.Option(2.0, help="Padding around each fill (px/pt)"),
    flatten: bool = typer.Option(
        False, "--flatten/--no-flatten", help="Rasterize PDFs instead of vector fills"
    ),
    scrub_text: bool = typer.Option(
        False, "--scrub-text/--no-scrub-text", help="Also remove text under PDF fills"
    ),
    audit: bool = typer.Option(True, "--audit/--no-audit", help="Write an audit JSON"),
):
    """Redact fields of a result JSON; without --field-id, every redactable field."""
    res = PipelineResult.model_validate(orjson.loads(Path(result).read_bytes()))
    ids = list(field_id or []) or [f.id for f in select_for_redaction(res.fields)]
    cfg = RunConfig(
        fill_rgb=_parse_rgb(fill), redaction_padding=padding,
        flatten_pdf=flatten, scrub_text=scrub_text,
    )
    source = Path(input).read_bytes()
    out = redact_document(
        RedactionRequest(source=source, mime_type=guess_mime(input), field_ids=ids, fields=res.fields),
        cfg,
    )
    Path(output).write_bytes(out.content)
    print(f"[green]Redacted:[/green] {output} ({out.applied} fills, {out.fallback} fallback)")
    if out.skipped:
        print(f"[yellow]Skipped:[/yellow] {', '.join(out.skipped)}")
    if audit:
        record = build_audit(
            source, out.content, source_name=input, extraction=res,
            redaction=out, cfg=cfg.snapshot(),
        )
        print(f"[green]Audit:[/green] {write_audit(output, record)}")


@app.command()
def run(
    input: str = typer.Option(..., "--input", "-i", help="Input PDF or image"),
    output: str = typer.Option(..., "--output", "-o", help="Result JSON path"),
    redacted: Optional[str] = typer.Option(None, help="Also write the redacted artifact here"),
    taxonomy: Optional[str] = typer.Option(None, help="Taxonomy name or YAML/JSON path"),
    threshold: float = typer.Option(0.8, help="Auto-accept confidence threshold"),
    use_llm: bool = typer.Option(True, help="Classify and match fields with Ollama"),
    llm_model: str = typer.Option("gemma3:4b", help="Ollama model name"),
    dpi: int = typer.Option(300, help="Rasterization DPI for PDFs"),
    lang: str = typer.Option("eng", help="Tesseract language"),
    workers: int = typer.Option(1, help="Pages extracted concurrently"),
    feedback_path: Optional[str] = typer.Option(None, help="JSONL file for feedback"),
):
    """Run the whole gate: classify, verify if unsure, extract, redact."""
    cfg = RunConfig(
        lang=lang, dpi=dpi, workers=workers, confidence_threshold=threshold,
        use_llm=use_llm, llm_model=llm_model, taxonomy_path=taxonomy,
    )
    ctx = build_context(cfg, feedback_path=feedback_path)
    bar, sink = _progress_bar("extract")
    wf = ClassificationWorkflow(ctx, progress=sink)
    source = Path(input).read_bytes()
    try:
        snap = wf.submit(Path(input).stem, source, guess_mime(input))
        if snap.phase is Phase.CLASSIFYING:
            snap = wf.classify()
        if snap.phase is Phase.VERIFICATION_NEEDED and snap.classification is not None:
            c = snap.classification
            print(f"Classified as [bold]{c.document_type}[/bold] ({c.confidence:.0%})")
            if typer.confirm("Is this correct?", default=True):
                snap = wf.verify(True)
            else:
                snap = wf.verify(False, typer.prompt("Correct document type"))
        if snap.phase in (Phase.CLASSIFIED, Phase.PROCESSING):
            snap = wf.process(redact=bool(redacted))
    finally:
        bar.close()

    if snap.phase is not Phase.COMPLETED or snap.outcome is None:
        print(f"[red]Failed:[/red] {snap.error or snap.phase.value}")
        raise typer.Exit(code=1)
    outcome = snap.outcome
    Path(output).write_bytes(_dump(outcome))
    print(f"[green]Type:[/green] {outcome.document_type}")
    if outcome.missing_required:
        print(f"[yellow]Missing required:[/yellow] {', '.join(outcome.missing_required)}")
    print(f"[green]Result:[/green] {output}")
    if redacted and outcome.redaction is not None:
        content = ctx.artifacts.get(outcome.redaction.locator)
        Path(redacted).write_bytes(content)
        record = build_audit(
            source, content, source_name=input, extraction=outcome.extraction,
            classification=snap.classification, cfg=cfg.snapshot(),
        )
        print(f"[green]Redacted:[/green] {redacted}")
        print(f"[green]Audit:[/green] {write_audit(redacted, record)}")


@app.command("feedback-stats")
def feedback_stats_cmd(
    feedback_path: str = typer.Option(..., help="JSONL feedback file"),
):
    """Show feedback counts per document type."""
    stats = feedback_stats(JsonlFeedbackStore(feedback_path).list())
    table = Table(title=f"Feedback ({stats.total} records)")
    table.add_column("Document type")
    table.add_column("Total", justify="right")
    table.add_column("Trained", justify="right")
    table.add_column("Untrained", justify="right")
    for name, s in sorted(stats.by_document_type.items()):
        table.add_row(name, str(s.total), str(s.trained), str(s.untrained))
    print(table)


@app.command("feedback-claim")
def feedback_claim_cmd(
    feedback_path: str = typer.Option(..., help="JSONL feedback file"),
    document_type: str = typer.Option("all", help="Document type or 'all'"),
    sub_type: Optional[str] = typer.Option(None, help="Restrict to a sub-type"),
    limit: Optional[int] = typer.Option(None, help="Maximum records to claim"),
):
    """Flag untrained feedback as used by a new training job."""
    claim = claim_for_training(
        JsonlFeedbackStore(feedback_path), document_type, sub_type, limit
    )
    print(f"[green]Job {claim.job_id}:[/green] claimed {claim.count} records")


@app.command()
def serve(
    host: Optional[str] = typer.Option(
        None, help="Host to bind (use 0.0.0.0 only when intentional)"
    ),
    port: Optional[int] = typer.Option(None, help="Port for the API server"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Launch the FastAPI service with uvicorn."""
    from .api import run as run_api

    run_api(host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
