"""Rich rendering of analysis reports and live events."""

from __future__ import annotations

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from classrecon.core.events import AnalysisEvent, AnalysisEventType
from classrecon.core.store import ClassModelStore
from classrecon.core.types.results import AnalysisReport, AnalysisState

_STATE_STYLES = {
    AnalysisState.NOT_ANALYZED: "dim",
    AnalysisState.ANALYZING: "yellow",
    AnalysisState.ATTRIBUTED_OK: "green",
    AnalysisState.REJECTED: "red",
}

_EVENT_STYLES = {
    AnalysisEventType.CLASS_START: ("class", "bold cyan"),
    AnalysisEventType.CLASS_END: ("class", "cyan"),
    AnalysisEventType.LAYOUT_BUILT: ("layout", "green"),
    AnalysisEventType.LAYOUT_FAILED: ("layout", "bold red"),
    AnalysisEventType.FUNCTION_ATTRIBUTED: ("attr", "green"),
    AnalysisEventType.FUNCTION_REJECTED: ("attr", "yellow"),
    AnalysisEventType.CAST_OVERRIDE: ("cast", "magenta"),
    AnalysisEventType.CAST_SKIPPED: ("cast", "dim"),
    AnalysisEventType.CANCELLED: ("stop", "bold red"),
}


def _class_label(key: int, store: Optional[ClassModelStore]) -> str:
    if store is not None:
        cls = store.get(key)
        if cls is not None:
            return cls.name
    return f"0x{key:x}"


def render_report(
    report: AnalysisReport,
    store: Optional[ClassModelStore] = None,
    console: Optional[Console] = None,
) -> None:
    """Print layouts, attribution states and cast overrides as tables."""
    console = console or Console(stderr=True)

    layouts = Table(title="Layouts", show_lines=False)
    layouts.add_column("Class")
    layouts.add_column("Size", justify="right")
    layouts.add_column("Status")
    for outcome in report.layouts:
        status = Text("built", style="green") if outcome.built else Text(
            outcome.error or "failed", style="red"
        )
        layouts.add_row(outcome.name, str(outcome.size) if outcome.built else "-", status)
    console.print(layouts)

    states = Table(title="Attribution")
    states.add_column("Class")
    states.add_column("State")
    states.add_column("Committed", justify="right")
    committed = {a.class_key: len(a.committed) for a in report.attributions}
    for key, state in report.states.items():
        states.add_row(
            _class_label(key, store),
            Text(state.value, style=_STATE_STYLES.get(state, "")),
            str(committed.get(key, 0)),
        )
    console.print(states)

    cast = report.dynamic_cast
    if cast is not None and (cast.overrides or cast.skipped or cast.failed):
        overrides = Table(title="__dynamic_cast overrides")
        overrides.add_column("Call", style="cyan")
        overrides.add_column("Signature")
        for record in cast.overrides:
            overrides.add_row(f"0x{record.call_address:x}", record.signature.format())
        for skipped in cast.skipped:
            overrides.add_row(f"0x{skipped.call_address:x}", Text(skipped.reason, style="dim"))
        for failed in cast.failed:
            overrides.add_row(f"0x{failed.call_address:x}", Text(failed.reason, style="red"))
        console.print(overrides)

    summary = (
        f"{sum(1 for o in report.layouts if o.built)}/{len(report.layouts)} layouts, "
        f"{report.committed_functions} functions attributed"
    )
    if cast is not None:
        summary += f", {len(cast.overrides)} cast overrides"
    if report.cancelled:
        console.print(Panel(summary, title="[bold red]cancelled[/bold red]", border_style="red"))
    else:
        console.print(Panel(summary, title="[bold green]done[/bold green]", border_style="green"))


class EventPrinter:
    """Event callback printing one styled line per analysis event."""

    def __init__(self, console: Optional[Console] = None, store: Optional[ClassModelStore] = None):
        self._console = console or Console(stderr=True)
        self._store = store
        self.count = 0

    def __call__(self, event: AnalysisEvent) -> None:
        self.on_event(event)

    def on_event(self, event: AnalysisEvent) -> None:
        self.count += 1
        tag, style = _EVENT_STYLES.get(event.event_type, ("event", ""))
        line = Text()
        line.append(f"[{tag}] ", style=style)
        if event.class_key is not None:
            line.append(_class_label(event.class_key, self._store), style="bold")
            line.append(" ")
        if event.function is not None:
            line.append(f"0x{event.function:x} ", style="cyan")
        line.append(event.message)
        if event.duration:
            line.append(f" ({event.duration:.2f}s)", style="dim")
        self._console.print(line)
