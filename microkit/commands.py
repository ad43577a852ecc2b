"""Registry and RPC queries shared by the command line and the bot."""

from __future__ import annotations

import copy
import json
import re
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .rpc import Client

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")
_WORD_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")


def _lookup(data: Mapping[str, Any], key: str) -> Any:
    if key in data:
        return data[key]
    lowered = key.lower()
    for name, value in data.items():
        if isinstance(name, str) and name.lower() == lowered:
            return value
    return None


def _require_mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"{what} must be a JSON object")
    return data


def _string(data: Mapping[str, Any], key: str) -> str:
    value = _lookup(data, key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


def _string_map(data: Mapping[str, Any], key: str) -> Dict[str, str]:
    value = _lookup(data, key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"{key} must be an object")
    result = {}
    for name, item in value.items():
        if not isinstance(item, str):
            raise ValueError(f"{key} values must be strings")
        result[str(name)] = item
    return result


def _list(data: Mapping[str, Any], key: str) -> List[Any]:
    value = _lookup(data, key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{key} must be a list")
    return value


def _integer(data: Mapping[str, Any], key: str) -> int:
    value = _lookup(data, key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, float) and value.is_integer():
            return int(value)
        raise ValueError(f"{key} must be an integer")
    return value


@dataclass
class Value:
    """A field of an endpoint's request or response, possibly with nested fields."""

    name: str
    type: str = ""
    values: List["Value"] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "Value":
        data = _require_mapping(data, "value")
        return cls(
            name=_string(data, "name"),
            type=_string(data, "type"),
            values=[cls.from_dict(item) for item in _list(data, "values")],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.type, "values": [v.to_dict() for v in self.values]}


@dataclass
class Endpoint:
    name: str
    request: Optional[Value] = None
    response: Optional[Value] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "Endpoint":
        data = _require_mapping(data, "endpoint")
        request = _lookup(data, "request")
        response = _lookup(data, "response")
        return cls(
            name=_string(data, "name"),
            request=None if request is None else Value.from_dict(request),
            response=None if response is None else Value.from_dict(response),
            metadata=_string_map(data, "metadata"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "request": None if self.request is None else self.request.to_dict(),
            "response": None if self.response is None else self.response.to_dict(),
            "metadata": dict(self.metadata),
        }


@dataclass
class Node:
    id: str
    address: str = ""
    port: int = 0
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "Node":
        data = _require_mapping(data, "node")
        return cls(
            id=_string(data, "id"),
            address=_string(data, "address"),
            port=_integer(data, "port"),
            metadata=_string_map(data, "metadata"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "address": self.address, "port": self.port, "metadata": dict(self.metadata)}


@dataclass
class Service:
    """One version of a named service with its nodes and endpoints."""

    name: str
    version: str = ""
    metadata: Dict[str, str] = field(default_factory=dict)
    endpoints: List[Endpoint] = field(default_factory=list)
    nodes: List[Node] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "Service":
        data = _require_mapping(data, "service")
        return cls(
            name=_string(data, "name"),
            version=_string(data, "version"),
            metadata=_string_map(data, "metadata"),
            endpoints=[Endpoint.from_dict(item) for item in _list(data, "endpoints")],
            nodes=[Node.from_dict(item) for item in _list(data, "nodes")],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "metadata": dict(self.metadata),
            "endpoints": [e.to_dict() for e in self.endpoints],
            "nodes": [n.to_dict() for n in self.nodes],
        }


class Registry:
    """In-memory service registry keyed by name and version."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._services: Dict[str, List[Service]] = {}

    def register(self, service: Service) -> None:
        if not service.name:
            raise ValueError("service name is required")
        with self._lock:
            versions = self._services.setdefault(service.name, [])
            existing = next((s for s in versions if s.version == service.version), None)
            if existing is None:
                versions.append(copy.deepcopy(service))
                return
            existing.metadata.update(service.metadata)
            if service.endpoints:
                existing.endpoints = copy.deepcopy(service.endpoints)
            for node in service.nodes:
                existing.nodes = [n for n in existing.nodes if n.id != node.id]
                existing.nodes.append(copy.deepcopy(node))

    def deregister(self, service: Service) -> None:
        with self._lock:
            versions = self._services.get(service.name)
            if not versions:
                return
            for existing in list(versions):
                if existing.version != service.version:
                    continue
                if service.nodes:
                    gone = {node.id for node in service.nodes}
                    existing.nodes = [n for n in existing.nodes if n.id not in gone]
                if not service.nodes or not existing.nodes:
                    versions.remove(existing)
            if not versions:
                del self._services[service.name]

    def get_service(self, name: str) -> List[Service]:
        with self._lock:
            return copy.deepcopy(self._services.get(name, []))

    def list_services(self) -> List[Service]:
        with self._lock:
            return [Service(name=name) for name in self._services]


@dataclass
class Environment:
    """What the commands work against: a registry, a client and an optional HTTP proxy."""

    registry: Registry = field(default_factory=Registry)
    client: Client = field(default_factory=Client)
    proxy_address: str = ""


def camel_to_snake(name: str) -> str:
    """Convert CamelCase, including runs of capitals, to snake_case."""
    text = _ACRONYM_BOUNDARY.sub(r"\1_\2", name)
    text = _WORD_BOUNDARY.sub(r"\1_\2", text)
    return text.lower()


def format_endpoint(value: Value, depth: int = 0) -> str:
    """Format a value as an indented line, nesting complex values in braces."""
    tabs = "\t" * (depth + 1)
    head = f"{tabs}{camel_to_snake(value.name)} {value.type}"
    if not value.values:
        return head + "\n"
    children = "".join(format_endpoint(child, depth + 1) for child in value.values)
    return f"{head} {{\n{children}{tabs}}}\n"


def _format_value(value: Optional[Value]) -> str:
    if value is None or not value.values:
        return "{}"
    return "{\n" + "".join(format_endpoint(v, 0) for v in value.values) + "}"


def _join_metadata(metadata: Mapping[str, str]) -> str:
    return ",".join(f"{key}={val}" for key, val in metadata.items())


def _http(method: str, url: str, body: Optional[bytes] = None, decode: bool = True) -> Any:
    if not url.startswith("http"):
        url = "http://" + url
    request = urllib.request.Request(url, data=body, method=method)
    if method == "POST":
        request.add_header("Content-Type", "application/json")
    try:
        with urllib.request.urlopen(request) as response:
            payload = response.read()
    except urllib.error.HTTPError as exc:
        payload = exc.read()
    if not decode:
        return None
    return json.loads(payload.decode("utf-8"))


def _services_from(data: Any) -> List[Service]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise ValueError("expected a list of services")
    return [Service.from_dict(item) for item in data]


def _parse_service(text: str) -> Service:
    data = json.loads(text)
    if data is None:
        raise ValueError("service definition is empty")
    return Service.from_dict(data)


def register_service(env: Environment, args: Sequence[str]) -> str:
    """Register a service from its JSON definition."""
    if not args:
        raise ValueError("require service definition")
    request = " ".join(args)
    if env.proxy_address:
        _http("POST", env.proxy_address + "/registry", request.encode(), decode=False)
        return "ok"
    env.registry.register(_parse_service(request))
    return "ok"


def deregister_service(env: Environment, args: Sequence[str]) -> str:
    """Deregister a service from its JSON definition."""
    if not args:
        raise ValueError("require service definition")
    request = " ".join(args)
    if env.proxy_address:
        _http("DELETE", env.proxy_address + "/registry", request.encode(), decode=False)
        return "ok"
    env.registry.deregister(_parse_service(request))
    return "ok"


def get_service(env: Environment, args: Sequence[str]) -> str:
    """Describe a service: its versions, nodes and endpoints."""
    if not args:
        raise ValueError("service requested")

    if env.proxy_address:
        services = _services_from(_http("GET", env.proxy_address + "/registry?service=" + args[0]))
    else:
        services = env.registry.get_service(args[0])

    if not services:
        raise LookupError("Service not found")

    output = ["service  " + services[0].name]
    for service in services:
        output.append("\nversion " + service.version)
        output.append("\nId\tAddress\tPort\tMetadata")
        for node in service.nodes:
            output.append(f"{node.id}\t{node.address}\t{node.port}\t{_join_metadata(node.metadata)}")

    for endpoint in services[0].endpoints:
        output.append(f"\nEndpoint: {endpoint.name}\nMetadata: {_join_metadata(endpoint.metadata)}\n")
        output.append(
            f"Request: {_format_value(endpoint.request)}\n\nResponse: {_format_value(endpoint.response)}\n"
        )

    return "\n".join(output)


def list_services(env: Environment) -> str:
    """Names of all registered services, sorted, one per line."""
    if env.proxy_address:
        services = _services_from(_http("GET", env.proxy_address + "/registry"))
    else:
        services = env.registry.list_services()
    return "\n".join(service.name for service in sorted(services, key=lambda s: s.name))


def _indent(value: Any) -> str:
    return json.dumps(value, indent="\t", ensure_ascii=False)


def query_service(env: Environment, args: Sequence[str]) -> str:
    """Call a service method with a JSON request and return the indented JSON response."""
    if len(args) < 2:
        raise ValueError("require service and method")
    service, method = args[0], args[1]
    request_text = " ".join(args[2:]) or "{}"

    if env.proxy_address:
        payload = json.dumps({"service": service, "method": method, "request": request_text})
        response = _http("POST", env.proxy_address + "/rpc", payload.encode())
        return _indent(response)

    request = json.loads(request_text)
    if request is not None and not isinstance(request, dict):
        raise ValueError("request must be a JSON object")
    try:
        response = env.client.call(service, method, request)
    except Exception as exc:
        raise RuntimeError(f"error calling {service}.{method}: {exc}\n") from exc
    return _indent(response)


def _field(obj: Any, name: str, default: Any) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        value = _lookup(obj, name)
    else:
        value = getattr(obj, name, None)
    return default if value is None else value


def _find(env: Environment, args: Sequence[str]) -> List[Service]:
    if not args:
        raise ValueError("require service name")
    services = env.registry.get_service(args[0])
    if not services:
        raise LookupError("Service not found")
    return services


def _node_address(node: Node) -> str:
    return f"{node.address}:{node.port}" if node.port > 0 else node.address


def _debug_call(env: Environment, name: str, method: str, address: str) -> Any:
    """Call a debug method on one node; proxy failures raise, client failures are returned."""
    if env.proxy_address:
        payload = json.dumps({"service": name, "method": method, "address": address})
        return _http("POST", env.proxy_address + "/rpc", payload.encode())
    try:
        return env.client.call(name, method, {}, address=address)
    except Exception as exc:
        return exc


def query_health(env: Environment, args: Sequence[str]) -> str:
    """Ask every node of a service for its health."""
    services = _find(env, args)
    name = services[0].name
    output = ["service  " + name]
    for service in services:
        output.append("\nversion " + service.version)
        output.append("\nnode\t\taddress:port\t\tstatus")
        for node in service.nodes:
            result = _debug_call(env, name, "Debug.Health", _node_address(node))
            if isinstance(result, Exception):
                status = str(result)
            else:
                status = str(_field(result, "status", ""))
            output.append(f"{node.id}\t\t{node.address}:{node.port}\t\t{status}")
    return "\n".join(output)


def _format_duration(ns: int) -> str:
    """Format nanoseconds the way durations are conventionally printed (1h2m3.5s, 1.5µs)."""
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    value = abs(ns)

    def fraction(amount: int, unit: int) -> str:
        whole, rest = divmod(amount, unit)
        if not rest:
            return str(whole)
        digits = len(str(unit)) - 1
        return f"{whole}." + f"{rest:0{digits}d}".rstrip("0")

    if value < 1000:
        text = f"{value}ns"
    elif value < 1_000_000:
        text = fraction(value, 1000) + "µs"
    elif value < 1_000_000_000:
        text = fraction(value, 1_000_000) + "ms"
    else:
        seconds, rest = divmod(value, 1_000_000_000)
        hours, remainder = divmod(seconds, 3600)
        minutes, secs = divmod(remainder, 60)
        secs_text = fraction(secs * 1_000_000_000 + rest, 1_000_000_000) + "s"
        if hours:
            text = f"{hours}h{minutes}m{secs_text}"
        elif minutes:
            text = f"{minutes}m{secs_text}"
        else:
            text = secs_text
    return sign + text


def _format_started(timestamp: int) -> str:
    moment = datetime.fromtimestamp(timestamp)
    return f"{_MONTHS[moment.month - 1]} {moment.day} {moment:%H:%M:%S}"


def query_stats(env: Environment, args: Sequence[str]) -> str:
    """Ask every node of a service for its runtime statistics."""
    services = _find(env, args)
    name = services[0].name
    output = ["service  " + name]
    for service in services:
        output.append("\nversion " + service.version)
        output.append("\nnode\t\taddress:port\t\tstarted\tuptime\tmemory\tthreads\tgc")
        for node in service.nodes:
            result = _debug_call(env, name, "Debug.Stats", _node_address(node))
            started = uptime = memory = gc_pause = ""
            threads = 0
            if not isinstance(result, Exception):
                started = _format_started(int(_field(result, "started", 0)))
                uptime = _format_duration(int(_field(result, "uptime", 0)) * 1_000_000_000)
                memory = f"{int(_field(result, 'memory', 0)) / (1024.0 * 1024.0):.2f}mb"
                gc_pause = _format_duration(int(_field(result, "gc", 0)))
                threads = int(_field(result, "threads", 0))
            output.append(
                f"{node.id}\t\t{node.address}:{node.port}\t\t{started}\t{uptime}\t{memory}\t{threads}\t{gc_pause}"
            )
    return "\n".join(output)