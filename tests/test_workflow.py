import threading

import pytest

from conftest import FakeClassifier, FakeExtractor, FakeRenderer, make_png
from pagegate.errors import ClassificationFailure, InvalidTransition
from pagegate.interfaces import FeedbackStore
from pagegate.models import ClassificationResult, FeedbackSource
from pagegate.pipeline.gate import ClassificationWorkflow, Phase

PDF = b"%PDF-1.7 fake"

INVOICE_FIELDS = {
    0: [
        {"label": "invoice number", "value": "INV-1", "confidence": 0.99,
         "boundingBox": {"x": 0.1, "y": 0.1, "width": 0.2, "height": 0.05}},
        {"label": "Email", "value": "a@b.io", "confidence": 0.9,
         "boundingBox": {"x": 0.1, "y": 0.3, "width": 0.3, "height": 0.05}},
    ]
}


def test_auto_accepted_document_is_processed(make_context):
    ctx = make_context(
        classifier=FakeClassifier("Invoice", 0.92),
        extractor=FakeExtractor(fields=INVOICE_FIELDS),
        renderer=FakeRenderer(1),
    )
    wf = ClassificationWorkflow(ctx)
    snap = wf.run("doc-1", PDF, "application/pdf")
    assert snap.phase is Phase.COMPLETED
    outcome = snap.outcome
    assert outcome.document_type == "Invoice"
    labels = {f.label: f for f in outcome.fields}
    assert labels["Invoice Number"].original_label == "invoice number"
    assert labels["Email"].action.value == "Redact"
    assert outcome.missing_required == ["Total Amount"]
    assert labels["Total Amount"].required_but_missing
    fb = ctx.feedback.list()
    assert len(fb) == 1
    assert fb[0].source is FeedbackSource.AUTO
    assert fb[0].corrected_document_type is None


def test_low_confidence_waits_for_verification(make_context):
    extractor = FakeExtractor()
    ctx = make_context(classifier=FakeClassifier("Invoice", 0.45), extractor=extractor)
    wf = ClassificationWorkflow(ctx)
    snap = wf.run("doc-2", make_png(), "image/png")
    assert snap.phase is Phase.VERIFICATION_NEEDED
    assert extractor.calls == []
    assert ctx.feedback.list() == []

    snap = wf.verify(False, "Passport")
    assert snap.phase is Phase.PROCESSING
    snap = wf.process()
    assert snap.phase is Phase.COMPLETED
    assert snap.outcome.document_type == "Passport"
    assert extractor.document_types == ["Passport"]
    (record,) = ctx.feedback.list()
    assert record.source is FeedbackSource.MANUAL
    assert record.corrected_document_type == "Passport"
    assert record.original_classification.confidence == pytest.approx(0.45)


def test_verified_classification_records_no_correction(make_context):
    ctx = make_context(classifier=FakeClassifier("Invoice", 0.5))
    wf = ClassificationWorkflow(ctx)
    wf.run("doc", make_png(), "image/png")
    wf.verify(True)
    (record,) = ctx.feedback.list()
    assert record.corrected_document_type is None
    assert record.effective_document_type == "Invoice"


def test_rejecting_without_type_keeps_verification_open(make_context):
    ctx = make_context(classifier=FakeClassifier("Invoice", 0.5))
    wf = ClassificationWorkflow(ctx)
    wf.run("doc", make_png(), "image/png")
    with pytest.raises(InvalidTransition):
        wf.verify(False)
    assert wf.snapshot.phase is Phase.VERIFICATION_NEEDED


def test_unknown_type_always_needs_verification(make_context):
    ctx = make_context(classifier=FakeClassifier("Recipe", 0.99))
    snap = ClassificationWorkflow(ctx).run("doc", make_png(), "image/png")
    assert snap.phase is Phase.VERIFICATION_NEEDED


def test_per_type_threshold_from_taxonomy(make_context):
    # Passport requires 0.85 while the run default is 0.8.
    ctx = make_context(classifier=FakeClassifier("Passport", 0.82))
    snap = ClassificationWorkflow(ctx).run("doc", make_png(), "image/png")
    assert snap.phase is Phase.VERIFICATION_NEEDED


def test_classifier_failure_moves_to_error(make_context):
    ctx = make_context(classifier=FakeClassifier(error=ClassificationFailure("model offline")))
    snap = ClassificationWorkflow(ctx).run("doc", make_png(), "image/png")
    assert snap.phase is Phase.ERROR
    assert "model offline" in snap.error


def test_unsupported_upload_moves_to_error(make_context):
    snap = ClassificationWorkflow(make_context()).submit("doc", b"hi", "text/plain")
    assert snap.phase is Phase.ERROR


def test_all_pages_failing_moves_to_error(make_context):
    ctx = make_context(extractor=FakeExtractor(fail=(0,)))
    snap = ClassificationWorkflow(ctx).run("doc", make_png(), "image/png")
    assert snap.phase is Phase.ERROR
    assert snap.error == "Failed to process any pages of the document"


def test_redaction_artifact_is_stored(make_context):
    ctx = make_context(
        classifier=FakeClassifier("Invoice", 0.95),
        extractor=FakeExtractor(fields=INVOICE_FIELDS),
    )
    wf = ClassificationWorkflow(ctx)
    snap = wf.run("doc", make_png(200, 200), "image/png", redact=True)
    summary = snap.outcome.redaction
    assert summary.applied == 1
    assert summary.content_type == "image/png"
    assert ctx.artifacts.get(summary.locator)[:8] == b"\x89PNG\r\n\x1a\n"
    assert ctx.artifacts.get(wf.source_locator)[:8] == b"\x89PNG\r\n\x1a\n"


def test_reset_during_classification_drops_late_result(make_context):
    started = threading.Event()
    release = threading.Event()

    class SlowClassifier(FakeClassifier):
        def classify(self, content):
            started.set()
            release.wait(5)
            return ClassificationResult(document_type="Invoice", confidence=0.99)

    ctx = make_context(classifier=SlowClassifier())
    wf = ClassificationWorkflow(ctx)
    wf.submit("doc", make_png(), "image/png")
    results = []
    t = threading.Thread(target=lambda: results.append(wf.classify()))
    t.start()
    assert started.wait(5)
    reset = wf.reset()
    release.set()
    t.join(5)
    assert reset.phase is Phase.IDLE
    assert wf.snapshot.phase is Phase.IDLE
    assert wf.snapshot.generation == 1
    assert results[0].phase is Phase.IDLE
    assert ctx.feedback.list() == []


def test_classification_is_single_flight(make_context):
    started = threading.Event()
    release = threading.Event()

    class SlowClassifier(FakeClassifier):
        def classify(self, content):
            self.calls += 1
            started.set()
            release.wait(5)
            return self.result

    classifier = SlowClassifier("Invoice", 0.3)
    wf = ClassificationWorkflow(make_context(classifier=classifier))
    wf.submit("doc", make_png(), "image/png")
    t = threading.Thread(target=wf.classify)
    t.start()
    assert started.wait(5)
    with pytest.raises(InvalidTransition, match="already in flight"):
        wf.classify()
    release.set()
    t.join(5)
    assert classifier.calls == 1
    assert wf.snapshot.phase is Phase.VERIFICATION_NEEDED


def test_feedback_store_failure_does_not_fail_workflow(make_context):
    class BrokenStore(FeedbackStore):
        def append(self, record):
            raise OSError("disk full")

    ctx = make_context(classifier=FakeClassifier("Invoice", 0.9))
    ctx.feedback = BrokenStore()
    snap = ClassificationWorkflow(ctx).run("doc", make_png(), "image/png")
    assert snap.phase is Phase.COMPLETED


def test_matcher_failure_falls_back_to_label_matching(make_context):
    class ExplodingMatcher:
        def match(self, fields, elements):
            raise RuntimeError("llm unreachable")

    ctx = make_context(
        classifier=FakeClassifier("Invoice", 0.9),
        extractor=FakeExtractor(fields=INVOICE_FIELDS),
    )
    ctx.matcher = ExplodingMatcher()
    snap = ClassificationWorkflow(ctx).run("doc", make_png(), "image/png")
    assert snap.phase is Phase.COMPLETED
    assert "Invoice Number" in {f.label for f in snap.outcome.fields}
