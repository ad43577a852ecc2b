"""RPC over HTTP: errors, API request conversion, an in-process client and the handler."""

from __future__ import annotations

import json
import random
import re
import threading
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from urllib.parse import unquote_plus

from .helper import request_to_metadata

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
RPC_ID = "go.micro.rpc"
CLIENT_ID = "go.micro.client"

_MIME_PART = r"[!#$%&'*+.^_`|~0-9A-Za-z-]+"
_MEDIA_TYPE = re.compile(rf"^{_MIME_PART}/{_MIME_PART}$")
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def _status_text(code: int) -> str:
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return ""


class MicroError(Exception):
    """An error carried between services as JSON."""

    def __init__(self, error_id: str = "", code: int = 0, detail: str = "", status: str = "") -> None:
        super().__init__(detail)
        self.id = error_id
        self.code = code
        self.detail = detail
        self.status = status

    def to_json(self) -> str:
        return json.dumps(
            {"id": self.id, "code": self.code, "detail": self.detail, "status": self.status},
            separators=(",", ":"),
        )

    def __str__(self) -> str:
        return self.to_json()

    def __repr__(self) -> str:
        return f"MicroError({self.id!r}, {self.code!r}, {self.detail!r}, {self.status!r})"


def parse_error(text: str) -> MicroError:
    """Read an error back from its JSON form; anything else becomes the detail."""
    try:
        data = json.loads(text)
    except ValueError:
        return MicroError(detail=text)
    if not isinstance(data, dict):
        return MicroError(detail=text)
    error_id = data.get("id", "")
    code = data.get("code", 0)
    detail = data.get("detail", "")
    status = data.get("status", "")
    if (
        not isinstance(error_id, str)
        or not isinstance(detail, str)
        or not isinstance(status, str)
        or isinstance(code, bool)
        or not isinstance(code, int)
    ):
        return MicroError(detail=text)
    return MicroError(error_id, code, detail, status)


def bad_request(error_id: str, detail: str) -> MicroError:
    return MicroError(error_id, 400, detail, _status_text(400))


def internal_server_error(error_id: str, detail: str) -> MicroError:
    return MicroError(error_id, 500, detail, _status_text(500))


@dataclass
class Pair:
    key: str
    values: List[str] = field(default_factory=list)


@dataclass
class ApiRequest:
    """An HTTP request in the shape handed to API services."""

    method: str
    path: str
    header: Dict[str, Pair] = field(default_factory=dict)
    get: Dict[str, Pair] = field(default_factory=dict)
    post: Dict[str, Pair] = field(default_factory=dict)
    body: str = ""


def _canonical(name: str) -> str:
    return "-".join(part.capitalize() for part in name.split("-"))


def _request_headers(environ: Mapping[str, Any]) -> Dict[str, List[str]]:
    headers: Dict[str, List[str]] = {}
    for key, value in environ.items():
        if key.startswith("HTTP_"):
            name = key[5:]
        elif key in ("CONTENT_TYPE", "CONTENT_LENGTH") and value:
            name = key
        else:
            continue
        name = _canonical(name.replace("_", "-"))
        if name == "Host":
            continue
        headers[name] = [value]
    return headers


def _read_body(environ: Mapping[str, Any]) -> bytes:
    stream = environ.get("wsgi.input")
    if stream is None:
        return b""
    try:
        length = int(environ.get("CONTENT_LENGTH") or -1)
    except ValueError:
        length = -1
    return stream.read(length) if length >= 0 else stream.read()


def _media_type(value: str) -> Optional[str]:
    main = (value or "").split(";", 1)[0].strip().lower()
    return main if _MEDIA_TYPE.match(main) else None


def _parse_query(text: str) -> Tuple[Dict[str, List[str]], Optional[str]]:
    values: Dict[str, List[str]] = {}
    error: Optional[str] = None
    for part in text.split("&"):
        if ";" in part:
            error = error or "invalid semicolon separator in query"
            continue
        if not part:
            continue
        key, _, value = part.partition("=")
        bad = _BAD_ESCAPE.search(key) or _BAD_ESCAPE.search(value)
        if bad:
            error = error or f"invalid URL escape {part[bad.start():bad.start() + 3]!r}"
            continue
        values.setdefault(unquote_plus(key), []).append(unquote_plus(value))
    return values, error


def _parse_form(
    environ: Mapping[str, Any], body: bytes
) -> Tuple[Dict[str, List[str]], Dict[str, List[str]]]:
    """Return the query and posted form values, raising ValueError on bad input."""
    query, query_error = _parse_query(environ.get("QUERY_STRING", "") or "")
    post: Dict[str, List[str]] = {}
    post_error = None
    method = environ.get("REQUEST_METHOD", "GET")
    if method in ("POST", "PUT", "PATCH") and _media_type(environ.get("CONTENT_TYPE", "")) == FORM_CONTENT_TYPE:
        post, post_error = _parse_query(body.decode("utf-8", "replace"))
    error = post_error or query_error
    if error:
        raise ValueError(error)
    return query, post


def request_to_api(environ: Mapping[str, Any]) -> ApiRequest:
    """Convert a WSGI request into an ApiRequest."""
    body = _read_body(environ)
    try:
        query, post = _parse_form(environ, body)
    except ValueError as exc:
        raise ValueError(f"Error parsing form: {exc}") from None

    headers = _request_headers(environ)
    request = ApiRequest(
        method=environ.get("REQUEST_METHOD", "GET"),
        path=(environ.get("SCRIPT_NAME", "") or "") + (environ.get("PATH_INFO", "") or ""),
    )

    content_type = _media_type(environ.get("CONTENT_TYPE", ""))
    if content_type is None:
        content_type = FORM_CONTENT_TYPE
        headers["Content-Type"] = [content_type]

    if content_type != FORM_CONTENT_TYPE:
        request.body = body.decode("utf-8", "replace")

    remote = environ.get("REMOTE_ADDR")
    if remote:
        ip = remote
        prior = headers.get("X-Forwarded-For")
        if prior:
            ip = ", ".join(prior) + ", " + ip
        request.header["X-Forwarded-For"] = Pair("X-Forwarded-For", [ip])

    request.header["Host"] = Pair("Host", [environ.get("HTTP_HOST", "")])

    for key, values in query.items():
        request.get.setdefault(key, Pair(key)).values = values
    for key, values in post.items():
        request.post.setdefault(key, Pair(key)).values = values
    for key, values in headers.items():
        request.header.setdefault(key, Pair(key)).values = values

    return request


Endpoint = Callable[[Any, Dict[str, str]], Any]


@dataclass
class _Node:
    address: str
    methods: Dict[str, Endpoint] = field(default_factory=dict)


class Client:
    """In-process RPC client that dispatches calls to registered endpoints."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._nodes: Dict[str, List[_Node]] = {}

    def handle(self, service: str, method: str, fn: Endpoint, address: str = "local") -> None:
        """Serve ``service.method`` from the node at ``address`` with ``fn(request, metadata)``."""
        with self._lock:
            nodes = self._nodes.setdefault(service, [])
            node = next((n for n in nodes if n.address == address), None)
            if node is None:
                node = _Node(address)
                nodes.append(node)
            node.methods[method] = fn

    def call(
        self,
        service: str,
        method: str,
        request: Any,
        metadata: Optional[Mapping[str, str]] = None,
        address: Optional[str] = None,
    ) -> Any:
        """Call a method on a service, on a given node when an address is set."""
        with self._lock:
            nodes = list(self._nodes.get(service, ()))
        if address:
            nodes = [node for node in nodes if node.address == address]
            if not nodes:
                raise internal_server_error(CLIENT_ID, f"connection error: nothing serving at {address}")
        elif not nodes:
            raise MicroError(CLIENT_ID, 404, f"service {service}: not found", _status_text(404))
        node = random.choice(nodes)
        fn = node.methods.get(method)
        if fn is None:
            raise bad_request("go.micro.server", f"unknown service method {method}")
        return fn(request, dict(metadata or {}))


def _decode_json(text: str) -> Any:
    text = text.lstrip()
    if not text:
        raise ValueError("EOF")
    value, _ = json.JSONDecoder().raw_decode(text)
    return value


def _respond(start_response: Callable, code: int, body: bytes, headers: List[Tuple[str, str]]) -> List[bytes]:
    start_response(f"{code} {_status_text(code) or 'Unknown'}", headers)
    return [body]


class RpcHandler:
    """WSGI application passing JSON or form encoded RPC requests to a client."""

    def __init__(self, client: Client) -> None:
        self.client = client

    def __call__(self, environ: Mapping[str, Any], start_response: Callable) -> List[bytes]:
        if environ.get("REQUEST_METHOD") != "POST":
            return _respond(
                start_response,
                405,
                b"Method not allowed\n",
                [("Content-Type", "text/plain; charset=utf-8"), ("X-Content-Type-Options", "nosniff")],
            )

        json_headers = [("Content-Type", "application/json")]
        body = _read_body(environ)

        try:
            service, method, address, request = self._decode(environ, body)
        except MicroError as error:
            return _respond(start_response, 400, error.to_json().encode(), json_headers)

        metadata = request_to_metadata(_request_headers(environ))
        try:
            response = self.client.call(service, method, request, metadata, address or None)
        except Exception as exc:
            error = parse_error(str(exc))
            if error.code == 0:
                error.code = 500
                error.id = RPC_ID
                error.status = _status_text(500)
                error.detail = "error during request: " + error.detail
            return _respond(start_response, error.code, error.to_json().encode(), json_headers)

        payload = json.dumps(response).encode()
        return _respond(start_response, 200, payload, json_headers + [("Content-Length", str(len(payload)))])

    @staticmethod
    def _decode(environ: Mapping[str, Any], body: bytes) -> Tuple[str, str, str, Any]:
        content_type = (environ.get("CONTENT_TYPE", "") or "").split(";", 1)[0]

        if content_type == "application/json":
            try:
                data = _decode_json(body.decode("utf-8"))
            except ValueError as exc:
                raise bad_request(RPC_ID, str(exc)) from None
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise bad_request(RPC_ID, f"cannot decode {type(data).__name__} into an rpc request")
            fields = {}
            for key, value in data.items():
                lowered = key.lower()
                if lowered not in fields or key == lowered:
                    fields[lowered] = value
            strings = []
            for name in ("service", "method", "address"):
                value = fields.get(name)
                if value is None:
                    value = ""
                if not isinstance(value, str):
                    raise bad_request(RPC_ID, f"{name} must be a string")
                strings.append(value)
            service, method, address = strings
            request = fields.get("request")
            if isinstance(request, str):
                try:
                    request = _decode_json(request)
                except ValueError as exc:
                    raise bad_request(RPC_ID, "error decoding request string: " + str(exc)) from None
        else:
            try:
                query, post = _parse_form(environ, body)
            except ValueError:
                query, post = {}, {}
            form: Dict[str, List[str]] = {}
            for source in (post, query):
                for key, values in source.items():
                    form.setdefault(key, []).extend(values)

            def first(name: str) -> str:
                return form.get(name, [""])[0]

            service, method, address = first("service"), first("method"), first("address")
            try:
                request = _decode_json(first("request"))
            except ValueError as exc:
                raise bad_request(RPC_ID, "error decoding request string: " + str(exc)) from None

        if not service:
            raise bad_request(RPC_ID, "invalid service")
        if not method:
            raise bad_request(RPC_ID, "invalid method")
        return service, method, address, request