"""Step lifecycle events and the observers that consume them."""

from dataclasses import dataclass
from typing import Dict, List, Optional

from rich.console import Console
from rich.markup import escape

STARTED = "started"
SUCCEEDED = "succeeded"
FAILED = "failed"


@dataclass(frozen=True)
class StepEvent:
    step: str
    phase: str
    status: str
    detail: Optional[str] = None


class EventBus:
    """Fans step events out to observers.

    Observers only render or record. A failing observer is logged and the
    deployment carries on.
    """

    def __init__(self, logger, observers=None):
        self.logger = logger
        self.observers = list(observers or [])

    def emit(self, event: StepEvent):
        self.logger.debug("Step %s %s%s", event.step, event.status, f": {event.detail}" if event.detail else "")
        for observer in self.observers:
            try:
                observer.handle(event)
            except Exception as exc:
                self.logger.warning(
                    "Observer %s failed on %s/%s: %s",
                    observer.__class__.__name__,
                    event.step,
                    event.status,
                    exc,
                )


class ConsoleReporter:
    """Renders phases as headers and steps as indented lines with a spinner."""

    def __init__(self, console: Console):
        self.console = console
        self.current_phase: Optional[str] = None
        self._status = None
        self._titles: Dict[str, str] = {}

    def set_titles(self, titles: Dict[str, str]):
        self._titles.update(titles)

    def handle(self, event: StepEvent):
        title = escape(self._titles.get(event.step, event.step.replace("_", " ")))
        detail = escape(event.detail) if event.detail else None

        if event.status == STARTED:
            if event.phase != self.current_phase:
                self.current_phase = event.phase
                self.console.print(f"[bold blue]{escape(event.phase)}...[/bold blue]")
            self._status = self.console.status(f"  {title}...")
            self._status.start()
            return

        self._stop_status()
        if event.status == SUCCEEDED:
            self.console.print(f"  [green]✔[/green] {detail or title}")
        elif event.status == FAILED:
            self.console.print(f"  [red]✖[/red] {title}: [red]{detail or 'failed'}[/red]")

    def _stop_status(self):
        if self._status is not None:
            self._status.stop()
            self._status = None


class RecordingReporter:
    """Keeps every event in memory, in emission order."""

    def __init__(self):
        self.events: List[StepEvent] = []

    def handle(self, event: StepEvent):
        self.events.append(event)

    def statuses(self, step: str) -> List[str]:
        return [event.status for event in self.events if event.step == step]
