"""Request statistics: rolling counters, process figures and WSGI middleware."""

from __future__ import annotations

import gc
import json
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import jinja2

from .stats_template import render_stats_page

WINDOW = 5.0
TOTAL = 24


class _GcTimer:
    """Accumulates time spent in garbage collection."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._installed = False
        self._start: Optional[int] = None
        self.total_ns = 0

    def install(self) -> None:
        with self._lock:
            if not self._installed:
                gc.callbacks.append(self._callback)
                self._installed = True

    def _callback(self, phase: str, info: Mapping[str, Any]) -> None:
        now = time.perf_counter_ns()
        if phase == "start":
            self._start = now
        elif phase == "stop" and self._start is not None:
            self.total_ns += now - self._start
            self._start = None


_gc_timer = _GcTimer()


def _memory_bytes() -> int:
    """Peak resident memory of the process, or 0 where it cannot be read."""
    try:
        import resource
    except ImportError:
        return 0
    rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    return rss if sys.platform == "darwin" else rss * 1024


def status_class(status: int) -> str:
    """Group an HTTP status code into its class label."""
    if status >= 500:
        return "50x"
    if status >= 400:
        return "40x"
    if status >= 300:
        return "30x"
    if status >= 200:
        return "20x"
    return ""


@dataclass
class Counter:
    """Requests counted during one window."""

    timestamp: int
    status: Dict[str, int] = field(default_factory=dict)
    total: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "status_codes": dict(self.status), "total_reqs": self.total}


class StatusRecorder:
    """Wraps a WSGI start_response and remembers the status it was given."""

    def __init__(self, start_response: Callable, status: int = 200) -> None:
        self._start_response = start_response
        self.status = status

    def start_response(self, status: str, headers: List[Any], exc_info: Any = None) -> Any:
        if exc_info is None:
            write = self._start_response(status, headers)
        else:
            write = self._start_response(status, headers, exc_info)
        self.status = int(str(status).split(None, 1)[0])
        return write


class Stats:
    """Rolling request counters with a background thread that advances the window."""

    def __init__(self, window: float = WINDOW, total: int = TOTAL) -> None:
        _gc_timer.install()
        self.window = window
        self.total = total
        self._lock = threading.RLock()
        self.started = 0
        self.memory = ""
        self.threads = 0
        self.gc = ""
        self.counters: List[Counter] = [Counter(int(time.time()))]
        self._rolls = 0
        self._running = False
        self._exit = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._sample()

    @property
    def running(self) -> bool:
        return self._running

    def _sample(self) -> None:
        self.threads = threading.active_count()
        self.memory = f"{_memory_bytes() / (1024 * 1024):.2f}mb"
        self.gc = f"{_gc_timer.total_ns / (1000 * 1000):.3f}ms"

    def record(self, code: str, count: int = 1) -> None:
        """Add ``count`` requests with status class ``code`` to the current window."""
        with self._lock:
            counter = self.counters[-1]
            counter.status[code] = counter.status.get(code, 0) + count
            counter.total += count

    def roll(self) -> None:
        """Open a new window, dropping the oldest once the history is full."""
        with self._lock:
            self.counters.append(Counter(int(time.time())))
            if len(self.counters) >= self.total:
                del self.counters[0]
            self._rolls += 1
            if self._rolls >= 2:
                self._sample()
                self._rolls = 0

    def _run(self, exit_event: threading.Event) -> None:
        while not exit_event.wait(self.window):
            self.roll()

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self.started = int(time.time())
            self._exit = threading.Event()
            self._thread = threading.Thread(target=self._run, args=(self._exit,), daemon=True)
            self._running = True
            self._thread.start()

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._exit.set()
            self.started = 0
            self._running = False
            thread, self._thread = self._thread, None
        if thread is not None:
            thread.join()

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "started": self.started,
                "memory": self.memory,
                "threads": self.threads,
                "gc_pause": self.gc,
                "counters": [counter.to_dict() for counter in self.counters],
            }

    def middleware(self, app: Callable) -> Callable:
        """Wrap a WSGI application so every response is counted by status class."""

        def wrapped(environ: Mapping[str, Any], start_response: Callable) -> Iterable[bytes]:
            recorder = StatusRecorder(start_response)
            result = app(environ, recorder.start_response)
            self.record(status_class(recorder.status), 1)
            return result

        return wrapped

    def stats_app(self, environ: Mapping[str, Any], start_response: Callable) -> List[bytes]:
        """WSGI application serving the statistics as JSON or as an HTML page."""
        content_type = environ.get("CONTENT_TYPE", "") or ""
        if content_type == "application/json":
            body = json.dumps(self.to_dict()).encode()
            start_response("200 OK", [("Content-Type", content_type)])
            return [body]
        try:
            page = render_stats_page()
        except jinja2.TemplateError as exc:
            start_response("500 Internal Server Error", [("Content-Type", "text/plain; charset=utf-8")])
            return [("Error occurred:" + str(exc) + "\n").encode()]
        start_response("200 OK", [("Content-Type", "text/html; charset=utf-8")])
        return [page.encode()]