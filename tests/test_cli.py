import orjson
from typer.testing import CliRunner

from conftest import make_png
from pagegate.cli import app
from pagegate.feedback import JsonlFeedbackStore
from pagegate.models import ClassificationFeedback, ClassificationResult, ExtractedField, PipelineResult

runner = CliRunner()


def test_redact_writes_output_and_audit(tmp_path, monkeypatch):
    monkeypatch.setenv("USER", "cli")
    src = tmp_path / "scan.png"
    src.write_bytes(make_png(200, 200))
    result = PipelineResult(
        success=True,
        fields=[
            ExtractedField(
                id="page-1-field-0",
                label="Email",
                value="a@b.io",
                action="Redact",
                bounding_box={"left": 0.1, "top": 0.1, "width": 0.5, "height": 0.1},
            )
        ],
    )
    res_path = tmp_path / "scan.json"
    res_path.write_bytes(orjson.dumps(result.model_dump(mode="json", by_alias=True)))
    out = tmp_path / "out.png"

    cli = runner.invoke(
        app,
        ["redact", "-i", str(src), "-r", str(res_path), "-o", str(out), "--fill", "0,0,255"],
    )
    assert cli.exit_code == 0, cli.output
    assert out.read_bytes()[:8] == b"\x89PNG\r\n\x1a\n"
    audit = orjson.loads((tmp_path / "out.audit.json").read_bytes())
    assert audit["result"]["summary"]["applied"] == 1


def test_redact_rejects_bad_fill(tmp_path):
    src = tmp_path / "scan.png"
    src.write_bytes(make_png())
    res_path = tmp_path / "scan.json"
    res_path.write_bytes(b'{"success": true}')
    cli = runner.invoke(
        app,
        ["redact", "-i", str(src), "-r", str(res_path), "-o", str(tmp_path / "o.png"), "--fill", "1,2"],
    )
    assert cli.exit_code != 0


def test_feedback_stats_and_claim(tmp_path):
    path = tmp_path / "fb.jsonl"
    store = JsonlFeedbackStore(path)
    for doc in ("a", "b"):
        store.append(
            ClassificationFeedback(
                document_id=doc,
                original_classification=ClassificationResult(document_type="Passport", confidence=0.9),
            )
        )

    stats = runner.invoke(app, ["feedback-stats", "--feedback-path", str(path)])
    assert stats.exit_code == 0, stats.output
    assert "Passport" in stats.output

    claim = runner.invoke(app, ["feedback-claim", "--feedback-path", str(path), "--limit", "1"])
    assert claim.exit_code == 0, claim.output
    assert "claimed 1 records" in claim.output
    assert sum(r.has_been_used_for_training for r in JsonlFeedbackStore(path).list()) == 1
