import queue
import threading

import pytest

from microkit.bot import Bot, Event, EventType, HELP_PATTERN, Input, help_command
from microkit.bot_commands import Command
from microkit.commands import Environment, Registry, Service


class QueueConn:
    def __init__(self):
        self.incoming = queue.Queue()
        self.outgoing = queue.Queue()
        self.closed = threading.Event()

    def send(self, event):
        if event is None:
            raise ValueError("nil event")
        if self.closed.is_set():
            raise ConnectionError("connection closed")
        self.outgoing.put(event)

    def recv(self):
        while not self.closed.is_set():
            try:
                return self.incoming.get(timeout=0.05)
            except queue.Empty:
                continue
        raise ConnectionError("connection closed")

    def close(self):
        self.closed.set()


class QueueInput(Input):
    name = "test"

    def __init__(self):
        self.conn = QueueConn()

    def stream(self):
        return self.conn


class RecordingConn:
    def __init__(self):
        self.sent = []

    def send(self, event):
        self.sent.append(event)


class FakeClient:
    def __init__(self, help_responses=None, exec_response=None, exec_error=None):
        self.help_responses = help_responses or {}
        self.exec_response = exec_response
        self.exec_error = exec_error
        self.calls = []

    def call(self, service, method, request, metadata=None, address=None):
        self.calls.append((service, method, request))
        if method == "Command.Help":
            if service not in self.help_responses:
                raise RuntimeError("no such service")
            return self.help_responses[service]
        if self.exec_error is not None:
            raise self.exec_error
        return self.exec_response


def echo_command():
    return Command("echo", "test usage", "test description", lambda *args: " ".join(args[1:]))


def make_env(client=None):
    return Environment(registry=Registry(), client=client or FakeClient())


def test_bot_echo_round_trip():
    io = QueueInput()
    bot = Bot({"test": io}, {"^echo ": echo_command()}, env=make_env(), refresh_interval=60.0)
    bot.start()
    try:
        io.conn.incoming.put(Event(type=EventType.TEXT, data="echo test", meta={}))
        ev = io.conn.outgoing.get(timeout=2)
        assert ev.data == "test"
    finally:
        bot.stop()


def test_bot_skips_non_text_events():
    io = QueueInput()
    bot = Bot({"test": io}, {"^echo ": echo_command()}, env=make_env(), refresh_interval=60.0)
    bot.start()
    try:
        io.conn.incoming.put(Event(type=EventType.UNKNOWN, data="echo ignored"))
        io.conn.incoming.put(Event(type=EventType.TEXT, data=""))
        io.conn.incoming.put(Event(type=EventType.TEXT, data="echo kept"))
        ev = io.conn.outgoing.get(timeout=2)
        assert ev.data == "kept"
        assert io.conn.outgoing.empty()
    finally:
        bot.stop()


def test_stop_closes_connection():
    io = QueueInput()
    bot = Bot({"test": io}, {}, env=make_env(), refresh_interval=60.0)
    bot.start()
    io.conn.incoming.put(Event(data="help"))
    io.conn.outgoing.get(timeout=2)
    bot.stop()
    assert io.conn.closed.is_set()


def test_reply_swaps_sender_and_recipient():
    bot = Bot({}, {"^echo ": echo_command()}, env=make_env())
    conn = RecordingConn()
    bot.process(conn, Event(data="echo hi", sender="alice", recipient="bot", meta={"room": "a"}))
    assert len(conn.sent) == 1
    reply = conn.sent[0]
    assert reply.data == "hi"
    assert reply.sender == "bot"
    assert reply.recipient == "alice"
    assert reply.meta == {"room": "a"}
    assert reply.type is EventType.TEXT


def test_command_error_is_reported():
    def fail(*args):
        raise ValueError("bad")

    bot = Bot({}, {"^boom$": Command("boom", "boom", "fails", fail)}, env=make_env())
    conn = RecordingConn()
    bot.process(conn, Event(data="boom"))
    assert conn.sent[0].data == "error executing cmd: bad"


def test_unknown_command_sends_nothing():
    bot = Bot({}, {"^echo ": echo_command()}, env=make_env())
    conn = RecordingConn()
    bot.process(conn, Event(data="weather london"))
    assert conn.sent == []


def test_help_command_lists_sorted_commands_and_services():
    commands = {
        "^ping$": Command("ping", "ping", "Returns pong", lambda *a: "pong"),
        "^echo ": Command("echo", "echo [text]", "Returns the [text]", lambda *a: ""),
    }
    cmd = help_command(commands, ["weather - forecast"])
    assert cmd.name == "help"
    assert cmd.exec("help") == "\n\necho [text] - Returns the [text]\nping - Returns pong\nweather - forecast"


def test_help_registered_without_itself():
    bot = Bot({}, {"^echo ": echo_command()}, env=make_env())
    conn = RecordingConn()
    bot.process(conn, Event(data="help"))
    assert conn.sent[0].data == "\n\ntest usage - test description"
    assert HELP_PATTERN in bot.commands


def service_env(**client_kwargs):
    client = FakeClient(
        help_responses={"go.micro.bot.weather": {"usage": "weather [city]", "description": "Reports weather"}},
        **client_kwargs,
    )
    env = make_env(client)
    env.registry.register(Service(name="go.micro.bot.weather"))
    env.registry.register(Service(name="go.micro.bot"))
    env.registry.register(Service(name="other.svc"))
    return env, client


def test_refresh_services_finds_namespace_services():
    env, _ = service_env()
    bot = Bot({}, {"^echo ": echo_command()}, env=env)
    services = bot.refresh_services()
    assert services == {"go.micro.bot.weather": "weather [city] - Reports weather"}
    assert bot.services == services
    conn = RecordingConn()
    bot.process(conn, Event(data="help"))
    assert conn.sent[0].data.endswith("\nweather [city] - Reports weather")
    assert "test usage - test description" in conn.sent[0].data


def test_service_command_result():
    env, client = service_env(exec_response={"result": "sunny"})
    bot = Bot({}, {}, env=env)
    bot.refresh_services()
    conn = RecordingConn()
    bot.process(conn, Event(data="weather london"))
    assert conn.sent[0].data == "sunny"
    assert client.calls[-1] == ("go.micro.bot.weather", "Command.Exec", {"args": ["weather", "london"]})


def test_service_command_error_field():
    env, _ = service_env(exec_response={"error": "boom"})
    bot = Bot({}, {}, env=env)
    bot.refresh_services()
    conn = RecordingConn()
    bot.process(conn, Event(data="weather"))
    assert conn.sent[0].data == "error executing cmd: boom"


def test_service_command_call_failure():
    env, _ = service_env(exec_error=RuntimeError("unreachable"))
    bot = Bot({}, {}, env=env)
    bot.refresh_services()
    conn = RecordingConn()
    bot.process(conn, Event(data="weather"))
    assert conn.sent[0].data == "error executing cmd: unreachable"


def test_input_stream_is_abstract():
    with pytest.raises(TypeError):
        Input()