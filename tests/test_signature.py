# ruff: noqa: S101
"""Tests for the drawing surface and the manager-then-auditor sequencer."""

from __future__ import annotations

import json

import pytest

from store_audit.errors import EmptySignatureError, SessionStateError
from store_audit.signature import (
    SequencerState,
    SignatureSequencer,
    SignatureSurface,
    SignerRole,
    decode_payload,
)

STROKES = [[[10, 10], [20, 25], [35, 12]]]


def test_surface_ignores_single_point_taps() -> None:
    surface = SignatureSurface()
    surface.begin_stroke(5, 5)
    surface.end_stroke()
    assert surface.is_empty

    surface.begin_stroke(5, 5)
    surface.extend_stroke(6.04, 7.26)
    assert surface.stroke_count == 1
    payload = json.loads(surface.export_payload())
    assert payload == {"strokes": [[[5.0, 5.0], [6.0, 7.3]]]}


def test_decode_payload_tolerates_garbage() -> None:
    assert decode_payload("not json") == []
    assert decode_payload('{"strokes": 3}') == []
    assert decode_payload('{"strokes":[[[1,2],[3,4]]]}') == [[(1.0, 2.0), (3.0, 4.0)]]


def test_empty_submit_keeps_state() -> None:
    seq = SignatureSequencer()
    with pytest.raises(EmptySignatureError) as exc:
        seq.submit()
    assert str(exc.value) == "Por favor firme antes de continuar."
    assert seq.state == SequencerState.AWAITING_MANAGER
    assert seq.current_signer == SignerRole.MANAGER


def test_manager_then_auditor_with_surface_cleared() -> None:
    done = []
    surface = SignatureSurface()
    seq = SignatureSequencer(surface, on_done=lambda m, a: done.append((m, a)))

    assert seq.submit_strokes(STROKES) == SequencerState.AWAITING_AUDITOR
    assert surface.is_empty
    assert seq.current_signer == SignerRole.AUDITOR
    assert seq.manager_signature
    assert done == []

    with pytest.raises(EmptySignatureError):
        seq.submit()
    assert seq.state == SequencerState.AWAITING_AUDITOR

    surface.begin_stroke(0, 0)
    surface.extend_stroke(4, 4)
    assert seq.submit() == SequencerState.DONE
    assert done == [(seq.manager_signature, seq.auditor_signature)]
    assert seq.current_signer is None

    with pytest.raises(SessionStateError):
        seq.submit_strokes(STROKES)


def test_clear_surface_discards_current_drawing() -> None:
    seq = SignatureSequencer()
    seq.surface.begin_stroke(0, 0)
    seq.surface.extend_stroke(1, 1)
    seq.clear_surface()
    with pytest.raises(EmptySignatureError):
        seq.submit()


def test_cancel_wipes_signatures_and_blocks_resume() -> None:
    seq = SignatureSequencer()
    seq.submit_strokes(STROKES)
    seq.cancel()
    assert seq.manager_signature == ""
    assert seq.cancelled
    assert seq.current_signer is None
    with pytest.raises(SessionStateError):
        seq.submit_strokes(STROKES)
