import threading
from collections import defaultdict


_lock = threading.Lock()
_counters = defaultdict(int)
_gauges = defaultdict(int)
_durations = defaultdict(float)


def inc(name: str, value: int = 1) -> None:
    with _lock:
        _counters[name] += value


def gauge_add(name: str, delta: int) -> None:
    with _lock:
        _gauges[name] += delta


def observe(name: str, value: float) -> None:
    with _lock:
        _durations[name] += value


def snapshot() -> tuple[dict, dict, dict]:
    with _lock:
        return dict(_counters), dict(_gauges), dict(_durations)


def reset() -> None:
    with _lock:
        _counters.clear()
        _gauges.clear()
        _durations.clear()


def render_text() -> str:
    counters, gauges, durations = snapshot()
    lines = []
    for name, value in sorted(counters.items()):
        lines.append(f"{name} {value}")
    for name, value in sorted(gauges.items()):
        lines.append(f"{name} {value}")
    for name, value in sorted(durations.items()):
        lines.append(f"{name}_sum {value}")
    return "\n".join(lines) + "\n"
