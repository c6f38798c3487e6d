"""Plain-text and HTML summaries of a cleaning session.

The report lists every recommendation with its decision, followed by the
transformation log counts. It is presentation only: nothing here feeds back
into the engine.
"""

from __future__ import annotations

import html
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sheet_cleaner.models import (
    Decision,
    Recommendation,
    TransformationLogEntry,
    TransformationStatus,
)


@dataclass
class ReportLine:
    """One recommendation as it appears in the report."""

    step: int
    message: str
    transformation_type: str
    sheet: str
    decision: Decision | None


@dataclass
class CleaningReport:
    """Summary of applied versus skipped actions."""

    session_id: str
    filename: str | None
    lines: list[ReportLine] = field(default_factory=list)
    completed_entries: int = 0
    failed_entries: int = 0
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def accepted(self) -> list[ReportLine]:
        return [line for line in self.lines if line.decision is Decision.ACCEPT]

    @property
    def skipped(self) -> list[ReportLine]:
        return [line for line in self.lines if line.decision is Decision.SKIP]

    @property
    def pending(self) -> list[ReportLine]:
        return [line for line in self.lines if line.decision is None]

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "filename": self.filename,
            "total": len(self.lines),
            "accepted": len(self.accepted),
            "skipped": len(self.skipped),
            "pending": len(self.pending),
            "completed_entries": self.completed_entries,
            "failed_entries": self.failed_entries,
            "generated_at": self.generated_at.isoformat(),
        }

    def to_text(self) -> str:
        out = [
            f"Cleaning report for {self.filename or self.session_id}",
            f"Generated: {self.generated_at.strftime('%Y-%m-%d %H:%M:%S')} UTC",
            "",
            f"Total recommendations: {len(self.lines)}",
            f"Applied: {len(self.accepted)}",
            f"Skipped: {len(self.skipped)}",
        ]
        if self.pending:
            out.append(f"Not decided: {len(self.pending)}")
        out.append(
            f"Chunk operations: {self.completed_entries} completed, "
            f"{self.failed_entries} failed"
        )

        for title, lines in (("Applied actions", self.accepted), ("Skipped actions", self.skipped)):
            if not lines:
                continue
            out.extend(["", f"{title}:"])
            out.extend(
                f"  {line.step}. {line.message or line.transformation_type} "
                f"[{line.transformation_type} on {line.sheet}]"
                for line in lines
            )
        return "\n".join(out) + "\n"

    def to_html(self) -> str:
        def rows(lines: list[ReportLine]) -> str:
            if not lines:
                return "<li><em>None</em></li>"
            return "\n".join(
                f"<li><strong>{line.step}.</strong> "
                f"{html.escape(line.message or line.transformation_type)} "
                f"<code>{html.escape(line.transformation_type)}</code> on "
                f"<code>{html.escape(line.sheet)}</code></li>"
                for line in lines
            )

        title = html.escape(self.filename or self.session_id)
        return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Cleaning report: {title}</title></head>
<body>
<h1>Cleaning report: {title}</h1>
<p>Generated {self.generated_at.strftime('%Y-%m-%d %H:%M:%S')} UTC</p>
<ul>
<li>Total recommendations: {len(self.lines)}</li>
<li>Applied: {len(self.accepted)}</li>
<li>Skipped: {len(self.skipped)}</li>
<li>Chunk operations: {self.completed_entries} completed, {self.failed_entries} failed</li>
</ul>
<h2>Applied actions</h2>
<ul>
{rows(self.accepted)}
</ul>
<h2>Skipped actions</h2>
<ul>
{rows(self.skipped)}
</ul>
</body>
</html>
"""


def build_report(
    session_id: str,
    filename: str | None,
    recommendations: list[Recommendation],
    decisions: dict[str, Decision],
    log: list[TransformationLogEntry],
) -> CleaningReport:
    lines = [
        ReportLine(
            step=rec.step,
            message=rec.message,
            transformation_type=rec.transformation.type,
            sheet=rec.transformation.sheet,
            decision=decisions.get(rec.id),
        )
        for rec in recommendations
    ]
    return CleaningReport(
        session_id=session_id,
        filename=filename,
        lines=lines,
        completed_entries=sum(1 for e in log if e.status is TransformationStatus.COMPLETED),
        failed_entries=sum(1 for e in log if e.status is TransformationStatus.FAILED),
    )
