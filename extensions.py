from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Tuple


class ExtensionError(Exception):
    pass


# program_start(interpreter)
# program_end(interpreter, executed_steps)
# on_error(interpreter, error)
EVENTS = frozenset({"program_start", "program_end", "on_error"})


@dataclass
class HookRegistry:
    # event -> list[(priority, handler)], highest priority first
    _events: Dict[str, List[Tuple[int, Callable[..., None]]]] = field(default_factory=dict)

    def on_event(self, event: str, handler: Callable[..., None], *, priority: int = 0) -> None:
        if event not in EVENTS:
            raise ExtensionError(f"Unknown interpreter event '{event}'")
        handlers = self._events.setdefault(event, [])
        handlers.append((priority, handler))
        handlers.sort(key=lambda t: t[0], reverse=True)

    def emit(self, event: str, *args: object) -> None:
        for _priority, handler in self._events.get(event, ()):
            handler(*args)
