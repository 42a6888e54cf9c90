"""Operator-facing event sinks."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape

_LEVEL_STYLES = {
    "info": "blue",
    "warning": "yellow",
    "error": "red",
}


@dataclass(frozen=True)
class UpgradeEvent:
    """Structured notice emitted by a reconciliation step."""

    level: str
    step: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


class EventSink:
    """Base sink; subclasses decide where events go."""

    def emit(self, event: UpgradeEvent):
        raise NotImplementedError

    def info(self, step: str, message: str, **details: Any):
        self.emit(UpgradeEvent("info", step, message, details))

    def warning(self, step: str, message: str, **details: Any):
        self.emit(UpgradeEvent("warning", step, message, details))


class ConsoleEventSink(EventSink):
    """Renders events on a rich console and mirrors them to the logger."""

    def __init__(self, logger: logging.Logger, console: Optional[Console] = None):
        self.logger = logger
        self.console = console or Console()

    def emit(self, event: UpgradeEvent):
        style = _LEVEL_STYLES.get(event.level, "white")
        prefix = f"[{event.step}]"
        if event.level == "warning":
            prefix = f"{prefix} WARNING:"
        self.console.print(f"[{style}]{escape(prefix)}[/{style}] {escape(event.message)}", highlight=False)

        if event.level == "warning":
            self.logger.warning("%s %s", prefix, event.message)
        elif event.level == "error":
            self.logger.error("%s %s", prefix, event.message)
        else:
            self.logger.debug("%s %s", prefix, event.message)


class MemoryEventSink(EventSink):
    """Keeps events in memory for callers that render them later."""

    def __init__(self):
        self.events: List[UpgradeEvent] = []

    def emit(self, event: UpgradeEvent):
        self.events.append(event)

    def warnings(self) -> List[UpgradeEvent]:
        return [event for event in self.events if event.level == "warning"]
