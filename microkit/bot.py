"""Chat bot that answers commands arriving on its inputs, built in or served by bot services."""

from __future__ import annotations

import enum
import logging
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .bot_commands import Command
from .commands import Environment

DEFAULT_NAME = "go.micro.bot"
DEFAULT_NAMESPACE = "go.micro.bot"
HELP_PATTERN = "^help$"

log = logging.getLogger(__name__)


class EventType(enum.Enum):
    """Kinds of events an input delivers."""

    TEXT = "text"
    UNKNOWN = "unknown"


@dataclass
class Event:
    """A message received from or sent to an input."""

    type: EventType = EventType.TEXT
    data: str = ""
    sender: Any = None
    recipient: Any = None
    meta: Dict[str, Any] = field(default_factory=dict)


class Input(ABC):
    """A chat source; its stream() returns a connection with send(event), recv() and close()."""

    name = "input"

    def init(self, ctx: Any) -> None:
        """Configure the input from the command line context."""

    def start(self) -> None:
        """Bring the input up."""

    def stop(self) -> None:
        """Shut the input down."""

    @abstractmethod
    def stream(self) -> Any:
        """Open a connection to the input."""

    def __str__(self) -> str:
        return self.name


def help_command(commands: Mapping[str, Command], service_commands: Optional[Iterable[str]] = None) -> Command:
    """A help command listing the given commands, sorted by name, then the service commands."""
    listed = sorted(commands.values(), key=str)
    extra = list(service_commands or ())

    def run(*args: str) -> str:
        lines = ["\n"]
        lines.extend(f"{cmd.usage} - {cmd.description}" for cmd in listed)
        lines.extend(extra)
        return "\n".join(lines)

    return Command("help", "help", "Displays help for all known commands", run)


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


class Bot:
    """Reads events from inputs and replies using built-in or service commands."""

    def __init__(
        self,
        inputs: Mapping[str, Input],
        commands: Mapping[str, Command],
        env: Optional[Environment] = None,
        ctx: Any = None,
        namespace: str = DEFAULT_NAMESPACE,
        refresh_interval: float = 30.0,
    ) -> None:
        self.inputs = dict(inputs)
        self.env = env if env is not None else Environment()
        self.ctx = ctx
        self.namespace = namespace
        self.refresh_interval = refresh_interval
        self._lock = threading.RLock()
        self.commands: Dict[str, Command] = dict(commands)
        self.commands[HELP_PATTERN] = help_command(self.commands)
        self.services: Dict[str, str] = {}
        self._exit = threading.Event()
        self._threads: List[threading.Thread] = []
        self._conns: set = set()

    @staticmethod
    def _reply(event: Event, data: str) -> Event:
        return Event(
            type=EventType.TEXT,
            data=data,
            sender=event.recipient,
            recipient=event.sender,
            meta=event.meta,
        )

    def _call_service(self, service: str, args: Sequence[str]) -> str:
        try:
            rsp = self.env.client.call(service, "Command.Exec", {"args": list(args)})
        except Exception as exc:
            return "error executing cmd: " + str(exc)
        error = _field(rsp, "error")
        if error:
            return "error executing cmd: " + str(error)
        result = _field(rsp, "result")
        if result is None:
            return ""
        if isinstance(result, (bytes, bytearray)):
            return bytes(result).decode("utf-8", errors="replace")
        return str(result)

    def process(self, conn: Any, event: Event) -> None:
        """Answer one text event on the connection it came from."""
        args = event.data.split(" ")
        if not args:
            return

        with self._lock:
            for pattern, command in self.commands.items():
                try:
                    matched = re.search(pattern, event.data)
                except re.error:
                    continue
                if not matched:
                    continue
                try:
                    response = command.exec(*args)
                except Exception as exc:
                    response = "error executing cmd: " + str(exc)
                break
            else:
                response = None
                service = f"{self.namespace}.{args[0]}"
                known = service in self.services

        if response is not None:
            conn.send(self._reply(event, response))
            return

        if not known:
            return

        conn.send(self._reply(event, self._call_service(service, args)))

    def _service_help(self, name: str) -> str:
        if not name.startswith(self.namespace):
            raise ValueError(f"{name} not within namespace")
        if not name[len(self.namespace):]:
            raise ValueError(f"{name} not a service")
        rsp = self.env.client.call(name, "Command.Help", {})
        usage = _field(rsp, "usage") or ""
        description = _field(rsp, "description") or ""
        return f"{usage} - {description}"

    def refresh_services(self) -> Dict[str, str]:
        """Look up bot services in the registry and rebuild the help command from them."""
        with self._lock:
            commands = dict(self.commands)

        services: Dict[str, str] = {}
        for service in self.env.registry.list_services():
            try:
                services[service.name] = self._service_help(service.name)
            except Exception:
                continue

        with self._lock:
            self.commands[HELP_PATTERN] = help_command(commands, list(services.values()))
            self.services = services
        return dict(services)

    def _run(self, io: Input) -> None:
        log.info("[bot][loop] connecting to %s", io)
        conn = io.stream()
        with self._lock:
            self._conns.add(conn)
        try:
            while not self._exit.is_set():
                event = conn.recv()
                if event.type is not EventType.TEXT or not event.data:
                    continue
                self.process(conn, event)
            log.info("[bot][loop] closing %s", io)
            conn.close()
        finally:
            with self._lock:
                self._conns.discard(conn)

    def _loop(self, io: Input) -> None:
        log.info("[bot][loop] starting %s", io)
        while not self._exit.is_set():
            try:
                self._run(io)
            except Exception as exc:
                if self._exit.is_set():
                    break
                log.info("[bot][loop] error %s", exc)
                self._exit.wait(1.0)
        log.info("[bot][loop] exiting %s", io)

    def _watch(self) -> None:
        while True:
            try:
                self.refresh_services()
            except Exception as exc:
                log.info("[bot] service refresh failed: %s", exc)
            if self._exit.wait(self.refresh_interval):
                return

    def _spawn(self, target: Any, *args: Any) -> None:
        thread = threading.Thread(target=target, args=args, daemon=True)
        self._threads.append(thread)
        thread.start()

    def start(self) -> None:
        """Initialise and start every input, then serve them in background threads."""
        log.info("[bot] starting")
        self._exit = threading.Event()
        for io in self.inputs.values():
            log.info("[bot] starting input %s", io)
            io.init(self.ctx)
            io.start()
            self._spawn(self._loop, io)
        self._spawn(self._watch)

    def stop(self) -> None:
        """Stop serving and shut every input down."""
        log.info("[bot] stopping")
        self._exit.set()
        for io in self.inputs.values():
            log.info("[bot] stopping input %s", io)
            try:
                io.stop()
            except Exception as exc:
                log.info("[bot] %s", exc)
        with self._lock:
            conns = list(self._conns)
        for conn in conns:
            try:
                conn.close()
            except Exception as exc:
                log.info("[bot] %s", exc)
        threads, self._threads = self._threads, []
        for thread in threads:
            thread.join(timeout=1.0)