import json
import re

import pytest

from microkit.bot_commands import (
    Command,
    builtin_commands,
    deregister,
    echo,
    get,
    health,
    hello,
    list_command,
    ping,
    query,
    register,
    three_laws,
    time_command,
)
from microkit.commands import Environment, Node, Service


@pytest.fixture
def env():
    return Environment()


def _definition():
    service = Service(name="svc", version="1", nodes=[Node(id="svc-1", address="127.0.0.1", port=1)])
    return json.dumps(service.to_dict())


def test_command_exec_and_str():
    cmd = Command("shout", "shout [x]", "Shouts", lambda *args: args[-1].upper())
    assert cmd.exec("shout", "hi") == "HI"
    assert str(cmd) == "shout"


def test_echo(env):
    cmd = echo(env)
    assert cmd.exec("echo", "hello", "world") == "hello world"
    assert cmd.exec("echo") == "echo what?"
    assert cmd.usage == "echo [text]"


def test_hello_and_ping(env):
    assert hello(env).exec("hello") == "hey what's up?"
    assert ping(env).exec("ping") == "pong"


def test_list_command(env):
    env.registry.register(Service(name="b", nodes=[Node(id="b-1")]))
    env.registry.register(Service(name="a", nodes=[Node(id="a-1")]))
    cmd = list_command(env)
    assert cmd.exec("list", "services").split("\n") == ["a", "b"]
    assert cmd.exec("list") == "list what?"
    assert cmd.exec("list", "nodes") == "unknown command...\nsupported commands: \nlist services"


def test_get(env):
    cmd = get(env)
    assert cmd.exec("get") == "get what?"
    assert cmd.exec("get", "service") == "require service name"
    assert cmd.exec("get", "thing").startswith("unknown command...")
    with pytest.raises(LookupError, match="Service not found"):
        cmd.exec("get", "service", "svc")


def test_get_registered_service(env):
    register(env).exec("register", "service", *_definition().split(" "))
    assert get(env).exec("get", "service", "svc").startswith("service  svc")


def test_health(env):
    cmd = health(env)
    assert cmd.exec("health") == "health of what?"
    with pytest.raises(LookupError):
        cmd.exec("health", "svc")


def test_query(env):
    env.client.handle("svc", "Foo.Bar", lambda request, metadata: request)
    cmd = query(env)
    out = cmd.exec("query", "", "svc", "Foo.Bar", '{"a":', "1}")
    assert json.loads(out) == {"a": 1}
    assert cmd.exec("query", " ") == "query what?"


def test_register_and_deregister(env):
    pieces = _definition().split(" ")
    assert register(env).exec("register", "service", *pieces) == "ok"
    assert env.registry.get_service("svc")[0].nodes[0].id == "svc-1"
    assert deregister(env).exec("deregister", "service", *pieces) == "ok"
    assert env.registry.get_service("svc") == []


def test_register_usage_messages(env):
    assert register(env).exec("register") == "register what?"
    assert register(env).exec("register", "service") == "require service definition"
    assert deregister(env).exec("deregister") == "deregister what?"
    assert deregister(env).exec("deregister", "x").endswith("deregister service [definition]")


def test_three_laws(env):
    out = three_laws(env).exec("three", "laws")
    lines = out.split("\n")
    assert lines[0] == ""
    assert len(lines) == 4
    assert lines[1].startswith("1. A robot may not injure a human being")


def test_time(env):
    out = time_command(env).exec("time")
    assert out.startswith("Server time is: ")
    assert re.search(r"\d{2}:\d{2}:\d{2}", out)


def test_builtin_commands_patterns(env):
    cmds = builtin_commands(env)
    assert str(cmds["^ping$"]) == "ping"
    matched = [p for p in cmds if re.match(p, "the three laws of robotics")]
    assert matched == ["^(the )?three laws( of robotics)?$"]
    assert cmds["^echo "].exec(*"echo hi".split(" ")) == "hi"