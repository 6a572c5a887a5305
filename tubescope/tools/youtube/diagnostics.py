"""Append-only trace of transcript acquisition attempts.

Every rung of the track and cue fallback ladders records one or more steps
here whether it succeeds or not. The trail is attached to
AcquisitionFailure so a user can see exactly which attempts were made and
what the upstream returned.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from tubescope.tools.youtube.client import TranscriptError

StepStatus = Literal["ok", "warn", "error"]


@dataclass(frozen=True)
class DiagnosticStep:
    """One recorded acquisition attempt."""

    label: str
    status: StepStatus
    detail: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"label": self.label, "status": self.status, "detail": self.detail}


@dataclass
class Diagnostics:
    """Ordered list of diagnostic steps."""

    steps: list[DiagnosticStep] = field(default_factory=list)

    def record(self, label: str, status: StepStatus, detail: str = "") -> DiagnosticStep:
        step = DiagnosticStep(label=label, status=status, detail=detail)
        self.steps.append(step)
        return step

    def ok(self, label: str, detail: str = "") -> DiagnosticStep:
        return self.record(label, "ok", detail)

    def warn(self, label: str, detail: str = "") -> DiagnosticStep:
        return self.record(label, "warn", detail)

    def error(self, label: str, detail: str = "") -> DiagnosticStep:
        return self.record(label, "error", detail)

    def count(self, status: StepStatus) -> int:
        return sum(1 for step in self.steps if step.status == status)

    def to_list(self) -> list[dict[str, str]]:
        return [step.to_dict() for step in self.steps]

    def render(self) -> str:
        """Render the trail as one line per step for display."""
        lines = []
        for step in self.steps:
            line = f"[{step.status.upper()}] {step.label}"
            if step.detail:
                line += f": {step.detail}"
            lines.append(line)
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self.steps)


class AcquisitionFailure(TranscriptError):
    """Raised when a fallback ladder is exhausted.

    Attributes:
        diagnostics: The full trail of attempts made before giving up.
    """

    def __init__(self, message: str, diagnostics: Diagnostics) -> None:
        super().__init__(message)
        self.diagnostics = diagnostics
