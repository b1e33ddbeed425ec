# store_audit/signature.py
"""
Two-party signature capture.

Both people sign on the same drawing surface, manager first and auditor
second. The sequencer owns the surface and clears it when the manager
signature is accepted so the auditor starts on a blank pad.

A signature payload is the JSON encoding of the drawn strokes:

    {"strokes": [[[x, y], [x, y], ...], ...]}

A stroke only counts as drawn when it has at least two points (a tap with
no movement leaves no ink).
"""
from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from store_audit.errors import EmptySignatureError, SessionStateError

logger = logging.getLogger("store_audit")

Point = Tuple[float, float]
Stroke = List[Point]


class SignatureSurface:
    def __init__(self) -> None:
        self._strokes: List[Stroke] = []
        self._open: Optional[Stroke] = None

    # -----------------------
    # Drawing events
    # -----------------------

    def begin_stroke(self, x: float, y: float) -> None:
        self.end_stroke()
        self._open = [(float(x), float(y))]

    def extend_stroke(self, x: float, y: float) -> None:
        if self._open is None:
            return
        self._open.append((float(x), float(y)))

    def end_stroke(self) -> None:
        if self._open is not None:
            self._strokes.append(self._open)
            self._open = None

    def load(self, strokes: Iterable[Sequence[Sequence[float]]]) -> None:
        """Replace the surface contents with a full stroke list sent by a client."""
        self.clear()
        for stroke in strokes or []:
            points = [(float(p[0]), float(p[1])) for p in stroke if len(p) >= 2]
            self._strokes.append(points)

    def clear(self) -> None:
        self._strokes = []
        self._open = None

    # -----------------------
    # State
    # -----------------------

    def drawn_strokes(self) -> List[Stroke]:
        strokes = list(self._strokes)
        if self._open is not None:
            strokes.append(self._open)
        return [s for s in strokes if len(s) >= 2]

    @property
    def stroke_count(self) -> int:
        return len(self.drawn_strokes())

    @property
    def is_empty(self) -> bool:
        return self.stroke_count == 0

    def export_payload(self) -> str:
        strokes = [[[round(x, 1), round(y, 1)] for x, y in s] for s in self.drawn_strokes()]
        return json.dumps({"strokes": strokes}, separators=(",", ":"))


def decode_payload(payload: str) -> List[Stroke]:
    """Inverse of SignatureSurface.export_payload. Unreadable payloads decode to no strokes."""
    try:
        data = json.loads(payload or "")
    except (TypeError, ValueError):
        return []
    strokes = data.get("strokes") if isinstance(data, dict) else None
    if not isinstance(strokes, list):
        return []
    out: List[Stroke] = []
    for s in strokes:
        try:
            out.append([(float(p[0]), float(p[1])) for p in s])
        except (TypeError, ValueError, IndexError):
            continue
    return out


class SignerRole(str, Enum):
    MANAGER = "manager"
    AUDITOR = "auditor"


class SequencerState(str, Enum):
    AWAITING_MANAGER = "AWAITING_MANAGER"
    AWAITING_AUDITOR = "AWAITING_AUDITOR"
    DONE = "DONE"


class SignatureSequencer:
    """
    AWAITING_MANAGER -> AWAITING_AUDITOR -> DONE.

    `on_done(manager_payload, auditor_payload)` runs synchronously on the
    auditor submission. A cancelled sequencer cannot be resumed; start a
    new one.
    """

    def __init__(
        self,
        surface: Optional[SignatureSurface] = None,
        on_done: Optional[Callable[[str, str], None]] = None,
    ) -> None:
        self.surface = surface or SignatureSurface()
        self.surface.clear()
        self.state = SequencerState.AWAITING_MANAGER
        self.manager_signature = ""
        self.auditor_signature = ""
        self.cancelled = False
        self._on_done = on_done

    @property
    def current_signer(self) -> Optional[SignerRole]:
        if self.cancelled:
            return None
        if self.state == SequencerState.AWAITING_MANAGER:
            return SignerRole.MANAGER
        if self.state == SequencerState.AWAITING_AUDITOR:
            return SignerRole.AUDITOR
        return None

    def clear_surface(self) -> None:
        self.surface.clear()

    def submit_strokes(self, strokes: Iterable[Sequence[Sequence[float]]]) -> SequencerState:
        self._ensure_active()
        self.surface.load(strokes)
        return self.submit()

    def submit(self) -> SequencerState:
        """Accept whatever is on the surface for the current signer."""
        self._ensure_active()
        if self.surface.is_empty:
            raise EmptySignatureError()

        payload = self.surface.export_payload()

        if self.state == SequencerState.AWAITING_MANAGER:
            self.manager_signature = payload
            self.clear_surface()
            self.state = SequencerState.AWAITING_AUDITOR
            logger.debug("Manager signature captured, surface cleared for auditor")
            return self.state

        self.auditor_signature = payload
        self.clear_surface()
        self.state = SequencerState.DONE
        logger.debug("Auditor signature captured, sequence complete")
        if self._on_done is not None:
            self._on_done(self.manager_signature, self.auditor_signature)
        return self.state

    def cancel(self) -> None:
        self.manager_signature = ""
        self.auditor_signature = ""
        self.clear_surface()
        self.cancelled = True

    def _ensure_active(self) -> None:
        if self.cancelled:
            raise SessionStateError("La captura de firmas fue cancelada.")
        if self.state == SequencerState.DONE:
            raise SessionStateError("Las firmas ya fueron capturadas.")
