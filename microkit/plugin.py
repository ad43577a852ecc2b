"""Plugins that add flags, commands and HTTP middleware to the toolkit."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

Handler = Callable[[Any], Any]


@dataclass
class Options:
    """Settings a plugin is built from."""

    name: str = "default"
    flags: List[Any] = field(default_factory=list)
    commands: List[Any] = field(default_factory=list)
    handlers: List[Handler] = field(default_factory=list)
    init: Optional[Callable[[Any], Any]] = None


Option = Callable[[Options], None]


def with_flag(*flags: Any) -> Option:
    """Add flags to a plugin."""

    def apply(options: Options) -> None:
        options.flags.extend(flags)

    return apply


def with_command(*commands: Any) -> Option:
    """Add commands to a plugin."""

    def apply(options: Options) -> None:
        options.commands.extend(commands)

    return apply


def with_handler(*handlers: Handler) -> Option:
    """Add middleware handlers to a plugin."""

    def apply(options: Options) -> None:
        options.handlers.extend(handlers)

    return apply


def with_name(name: str) -> Option:
    """Set the name of a plugin."""

    def apply(options: Options) -> None:
        options.name = name

    return apply


def with_init(fn: Callable[[Any], Any]) -> Option:
    """Set the function called once command line arguments are parsed."""

    def apply(options: Options) -> None:
        options.init = fn

    return apply


class Plugin:
    """A named bundle of flags, commands and HTTP middleware."""

    def __init__(self, options: Options) -> None:
        self.options = options

    @property
    def name(self) -> str:
        return self.options.name

    @property
    def flags(self) -> List[Any]:
        return self.options.flags

    @property
    def commands(self) -> List[Any]:
        return self.options.commands

    def wrap(self, app: Any) -> Any:
        """Wrap an application with every handler, in the order they were given."""
        for handler in self.options.handlers:
            app = handler(app)
        return app

    def init(self, ctx: Any) -> Any:
        """Run the plugin's init function, if it has one."""
        init = self.options.init
        if init is None:
            return None
        return init(ctx)

    def __str__(self) -> str:
        return self.options.name

    def __repr__(self) -> str:
        return f"Plugin(name={self.options.name!r})"


class Manager:
    """Stores plugins, refusing a second plugin with the same name."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._plugins: List[Plugin] = []
        self._registered: set[str] = set()

    def plugins(self) -> List[Plugin]:
        with self._lock:
            return list(self._plugins)

    def register(self, plugin: Plugin) -> None:
        name = str(plugin)
        with self._lock:
            if name in self._registered:
                raise ValueError(f"Plugin with name {name} already registered")
            self._registered.add(name)
            self._plugins.append(plugin)


_default_manager = Manager()


class ComponentManager:
    """Plugins of one component, refusing names already registered globally."""

    def __init__(self, global_manager: Manager | None = None) -> None:
        self._global = _default_manager if global_manager is None else global_manager
        self._local = Manager()

    def plugins(self) -> List[Plugin]:
        return self._local.plugins()

    def register(self, plugin: Plugin) -> None:
        name = str(plugin)
        if any(str(existing) == name for existing in self._global.plugins()):
            raise ValueError(f"{name} registered globally")
        self._local.register(plugin)


def new_plugin(*options: Option) -> Plugin:
    """Build a plugin from option functions."""
    settings = Options()
    for option in options:
        option(settings)
    return Plugin(settings)


def new_manager() -> Manager:
    return Manager()


def plugins() -> List[Plugin]:
    """List the global plugins."""
    return _default_manager.plugins()


def register(plugin: Plugin) -> None:
    """Register a global plugin."""
    _default_manager.register(plugin)