"""Built-in commands understood by the bot."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict

from . import commands as clic
from .commands import Environment

_DAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_LAWS = (
    "1. A robot may not injure a human being or, through inaction, allow a human being to come to harm.",
    "2. A robot must obey the orders given it by human beings except where such orders would conflict "
    "with the First Law.",
    "3. A robot must protect its own existence as long as such protection does not conflict with the "
    "First or Second Laws.",
)


@dataclass
class Command:
    """A named bot command with its usage, description and implementation."""

    name: str
    usage: str
    description: str
    fn: Callable[..., str]

    def exec(self, *args: str) -> str:
        return self.fn(*args)

    def __str__(self) -> str:
        return self.name


def echo(env: Environment) -> Command:
    def run(*args: str) -> str:
        if len(args) < 2:
            return "echo what?"
        return " ".join(args[1:])

    return Command("echo", "echo [text]", "Returns the [text]", run)


def hello(env: Environment) -> Command:
    return Command("hello", "hello", "Returns a greeting", lambda *args: "hey what's up?")


def ping(env: Environment) -> Command:
    return Command("ping", "ping", "Returns pong", lambda *args: "pong")


def get(env: Environment) -> Command:
    def run(*args: str) -> str:
        if len(args) < 2:
            return "get what?"
        if args[1] != "service":
            return "unknown command...\nsupported commands: \nget service [name]"
        if len(args) < 3:
            return "require service name"
        return clic.get_service(env, list(args[2:]))

    return Command("get", "get service [name]", "Returns a registered service", run)


def health(env: Environment) -> Command:
    def run(*args: str) -> str:
        if len(args) < 2:
            return "health of what?"
        return clic.query_health(env, list(args[1:]))

    return Command("health", "health [service]", "Returns health of a service", run)


def list_command(env: Environment) -> Command:
    def run(*args: str) -> str:
        if len(args) < 2:
            return "list what?"
        if args[1] != "services":
            return "unknown command...\nsupported commands: \nlist services"
        return clic.list_services(env)

    return Command("list", "list services", "Returns a list of registered services", run)


def query(env: Environment) -> Command:
    def run(*args: str) -> str:
        cargs = [arg for arg in args if arg.strip()]
        if len(cargs) < 2:
            return "query what?"
        return clic.query_service(env, cargs[1:])

    return Command(
        "query", "query [service] [method] [request]", "Returns the response for a service query", run
    )


def register(env: Environment) -> Command:
    def run(*args: str) -> str:
        if len(args) < 2:
            return "register what?"
        if args[1] != "service":
            return "unknown command...\nsupported commands: \nregister service [definition]"
        if len(args) < 3:
            return "require service definition"
        return clic.register_service(env, list(args[2:]))

    return Command("register", "register service [definition]", "Registers a service", run)


def deregister(env: Environment) -> Command:
    def run(*args: str) -> str:
        if len(args) < 2:
            return "deregister what?"
        if args[1] != "service":
            return "unknown command...\nsupported commands: \nderegister service [definition]"
        if len(args) < 3:
            return "require service definition"
        return clic.deregister_service(env, list(args[2:]))

    return Command("deregister", "deregister service [definition]", "Deregisters a service", run)


def three_laws(env: Environment) -> Command:
    return Command(
        "the three laws",
        "the three laws",
        "Returns the three laws of robotics",
        lambda *args: "\n" + "\n".join(_LAWS),
    )


def _rfc1123(moment: datetime) -> str:
    return (
        f"{_DAYS[moment.weekday()]}, {moment.day:02d} {_MONTHS[moment.month - 1]} {moment.year} "
        f"{moment:%H:%M:%S} {moment.tzname() or ''}"
    ).rstrip()


def time_command(env: Environment) -> Command:
    def run(*args: str) -> str:
        return "Server time is: " + _rfc1123(datetime.now().astimezone())

    return Command("time", "time", "Returns the server time", run)


def builtin_commands(env: Environment) -> Dict[str, Command]:
    """The built-in commands keyed by the pattern that triggers them."""
    return {
        "^echo ": echo(env),
        "^time$": time_command(env),
        "^hello$": hello(env),
        "^ping$": ping(env),
        "^list ": list_command(env),
        "^get ": get(env),
        "^health ": health(env),
        "^query ": query(env),
        "^register ": register(env),
        "^deregister ": deregister(env),
        "^(the )?three laws( of robotics)?$": three_laws(env),
    }