"""Human-readable renderings of steps and histories.

Console output is built as ``rich`` styled text and rendered either to
ANSI escapes or, with colour disabled, to plain text.  Markdown and JSON
renderings never carry colour.  Nothing here mutates its input.

Colour language:
  purpose colours  step headers, one per known purpose
  yellow           revisions and uncertainty
  magenta          branch markers
  grey             labels and rules
"""

from __future__ import annotations

import io
import json

from rich.console import Console
from rich.text import Text

from crashmcp.models.schemas import BranchStatus
from crashmcp.models.schemas import CrashHistory
from crashmcp.models.schemas import CrashStep
from crashmcp.models.schemas import SimpleAction
from crashmcp.models.schemas import StructuredAction

PURPOSE_STYLES: dict[str, str] = {
    "analysis": "blue",
    "action": "green",
    "reflection": "yellow",
    "decision": "magenta",
    "summary": "cyan",
    "validation": "bright_green",
    "exploration": "bright_yellow",
    "hypothesis": "bright_blue",
    "correction": "bright_red",
    "planning": "bright_cyan",
}
DEFAULT_PURPOSE_STYLE = "white"

_STATUS_GLYPHS = {
    BranchStatus.active: "●",
    BranchStatus.merged: "✓",
    BranchStatus.abandoned: "✗",
}

_RULE_WIDTH = 60
# Wide enough that rendering never wraps a line.
_RENDER_WIDTH = 10_000


def _percent(value: float) -> int:
    return int(value * 100 + 0.5)


def format_action(action: SimpleAction | StructuredAction) -> str:
    """One-line description of a next action."""
    if action.kind == "simple":
        return action.text
    text = action.action
    if action.tool:
        text = f"[{action.tool}] {text}"
    if action.parameters:
        text += f" ({json.dumps(action.parameters)})"
    return text


class StepFormatter:
    """Render steps and histories as console, markdown or JSON text."""

    def __init__(self, color: bool = True) -> None:
        self.color = color

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _render(self, lines: list[Text]) -> str:
        if not self.color:
            return "\n".join(line.plain for line in lines)
        console = Console(
            file=io.StringIO(),
            force_terminal=True,
            color_system="standard",
            width=_RENDER_WIDTH,
            highlight=False,
        )
        with console.capture() as capture:
            for index, line in enumerate(lines):
                console.print(line, end="" if index == len(lines) - 1 else "\n")
        return capture.get()

    def _confidence(self, confidence: float | None) -> Text:
        if confidence is None:
            return Text()
        percentage = _percent(confidence)
        if not self.color:
            return Text(f" [{percentage}%]")
        if confidence < 0.3:
            return Text(f" ○ {percentage}%", style="red")
        if confidence < 0.7:
            return Text(f" ◐ {percentage}%", style="yellow")
        return Text(f" ● {percentage}%", style="green")

    @staticmethod
    def _labelled(label: str, value: str, style: str = "bright_black") -> Text:
        line = Text(label, style=style)
        line.append(f" {value}")
        return line

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def format_step(self, step: CrashStep, output_format: str = "console") -> str:
        """Dispatch on *output_format* (``console``, ``markdown`` or ``json``)."""
        if output_format == "json":
            return self.format_step_json(step)
        if output_format == "markdown":
            return self.format_step_markdown(step)
        return self.format_step_console(step)

    def format_step_console(self, step: CrashStep) -> str:
        purpose_style = PURPOSE_STYLES.get(step.purpose.lower(), DEFAULT_PURPOSE_STYLE)

        header = Text(
            f"[Step {step.step_number}/{step.estimated_total}] "
            f"{step.purpose.upper()}",
            style=purpose_style,
        )
        header.append_text(self._confidence(step.confidence))
        if step.revises_step:
            header.append(f" ↻ Revises #{step.revises_step}", style="yellow")
        if step.branch_from:
            header.append(f" ⟿ Branch from #{step.branch_from}", style="magenta")
            if step.branch_name:
                header.append(f" ({step.branch_name})", style="bright_black")

        lines = [header, self._labelled("Context:", step.context)]
        lines.append(self._labelled("Thought:", step.thought, style="white"))
        if step.uncertainty_notes:
            lines.append(
                self._labelled("Uncertainty:", step.uncertainty_notes, style="yellow")
            )
        if step.revision_reason:
            lines.append(
                self._labelled("Revision Reason:", step.revision_reason, style="yellow")
            )
        lines.append(self._labelled("Outcome:", step.outcome))
        lines.append(
            self._labelled(
                "Next:", f"{format_action(step.next_action)} - {step.rationale}"
            )
        )
        if step.tools_used:
            lines.append(self._labelled("Tools Used:", ", ".join(step.tools_used)))
        if step.dependencies:
            deps = ", ".join(str(d) for d in step.dependencies)
            lines.append(self._labelled("Depends On:", f"Steps {deps}"))
        lines.append(Text("─" * _RULE_WIDTH, style="bright_black"))
        return self._render(lines)

    def format_step_markdown(self, step: CrashStep) -> str:
        lines = [
            f"### Step {step.step_number}/{step.estimated_total}: "
            f"{step.purpose.upper()}"
        ]

        badges: list[str] = []
        if step.confidence is not None:
            badges.append(
                "![Confidence](https://img.shields.io/badge/confidence-"
                f"{_percent(step.confidence)}%25-blue)"
            )
        if step.revises_step:
            badges.append(
                "![Revises](https://img.shields.io/badge/revises-step%20"
                f"{step.revises_step}-yellow)"
            )
        if step.branch_from:
            badges.append(
                "![Branch](https://img.shields.io/badge/branch-from%20"
                f"{step.branch_from}-purple)"
            )
        if badges:
            lines.append(" ".join(badges))

        lines += ["", f"**Context:** {step.context}"]
        lines += ["", f"**Thought:** {step.thought}"]
        if step.uncertainty_notes:
            lines += ["", f"> ⚠️ **Uncertainty:** {step.uncertainty_notes}"]
        if step.revision_reason:
            lines += ["", f"> 🔄 **Revision Reason:** {step.revision_reason}"]
        lines += [
            "",
            f"**Outcome:** {step.outcome}",
            "",
            f"**Next Action:** {format_action(step.next_action)}",
            f"- *Rationale:* {step.rationale}",
        ]
        if step.tools_used:
            lines += ["", f"**Tools Used:** {', '.join(step.tools_used)}"]
        lines += ["", "---"]
        return "\n".join(lines)

    def format_step_json(self, step: CrashStep) -> str:
        return step.model_dump_json(indent=2, exclude_none=True)

    # ------------------------------------------------------------------
    # Histories
    # ------------------------------------------------------------------

    def format_history_summary(self, history: CrashHistory) -> str:
        lines = [Text("=== CRASH Session Summary ===", style="bold")]
        lines.append(Text(f"Total Steps: {len(history.steps)}"))
        status = "✓ Completed" if history.completed else "⟳ In Progress"
        lines.append(Text(f"Status: {status}"))

        meta = history.metadata
        if meta.revisions_count:
            lines.append(Text(f"Revisions: {meta.revisions_count}"))
        if meta.branches_created:
            lines.append(Text(f"Branches Created: {meta.branches_created}"))
        if meta.total_duration_ms:
            lines.append(Text(f"Duration: {meta.total_duration_ms / 1000:.2f}s"))
        if meta.tools_used:
            lines.append(Text(f"Tools Used: {', '.join(meta.tools_used)}"))

        rated = [s.confidence for s in history.steps if s.confidence is not None]
        if rated:
            average = sum(rated) / len(rated)
            lines.append(Text(f"Average Confidence: {_percent(average)}%"))

        if history.branches:
            lines += [Text(""), Text("Branches:")]
            for branch in history.branches:
                glyph = _STATUS_GLYPHS[branch.status]
                lines.append(
                    Text(f"  {glyph} {branch.name} ({len(branch.steps)} steps)")
                )

        lines.append(Text("=" * 30, style="bright_black"))
        return self._render(lines)

    def format_branch_tree(self, history: CrashHistory) -> str:
        by_step: dict[int, list] = {}
        for branch in history.branches:
            by_step.setdefault(branch.from_step, []).append(branch)

        lines = ["Branch Structure:", "Main:"]
        for step in history.steps:
            if step.branch_id:
                continue
            lines.append(f"  └─ Step {step.step_number}: {step.purpose}")
            for branch in by_step.get(step.step_number, []):
                lines.append(f"     └─ Branch: {branch.name}")
                for branch_step in branch.steps:
                    lines.append(
                        f"        └─ Step {branch_step.step_number}: "
                        f"{branch_step.purpose}"
                    )
        return "\n".join(lines)
