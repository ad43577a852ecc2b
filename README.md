# microkit

A library of building blocks for working with microservices: a WSGI handler
that turns HTTP requests into RPC calls, request statistics middleware,
registry and RPC commands over an in-memory registry, a chat bot that answers
those commands, and a small plugin system.

## Installation

```
pip install microkit
```

## Modules

- `microkit.rpc` — `RpcHandler`, a WSGI application that accepts `POST`
  requests with a JSON body (`service`, `method`, `address`, `request`) or a
  form-encoded body and passes them to a `Client`. Responses and errors are
  returned as JSON; errors use `MicroError` (`id`, `code`, `detail`,
  `status`). `request_to_api` converts a WSGI environ into an `ApiRequest`
  with its headers, query and posted form values as `Pair`s.
- `microkit.helper` — `acme_hosts`, `request_to_metadata` and `tls_config`
  (an `ssl.SSLContext` for a server; a CA file makes client certificates
  mandatory).
- `microkit.stats` — `Stats` counts responses by status class (`20x`, `40x`,
  `50x`, ...) in windows of five seconds, keeping a bounded history.
  `Stats.middleware(app)` wraps a WSGI application; `Stats.stats_app` serves
  the figures as JSON (when the request's content type is
  `application/json`) or as an HTML page from `microkit.stats_template`.
  `start()` and `stop()` run and end the background thread that rolls the
  windows.
- `microkit.commands` — `Registry` (in memory), `Service`, `Node`,
  `Endpoint` and `Value`, and the commands `register_service`,
  `deregister_service`, `get_service`, `list_services`, `query_service`,
  `query_health` and `query_stats`. They work against an `Environment`
  holding a registry and a client; when `proxy_address` is set, registry and
  RPC calls go over HTTP to that address instead.
- `microkit.bot_commands` — the bot's built-in `Command`s (`echo`, `hello`,
  `ping`, `time`, `list`, `get`, `health`, `query`, `register`,
  `deregister`, `the three laws`); `builtin_commands(env)` returns them keyed
  by the regular expression that triggers each.
- `microkit.bot` — `Bot` reads text `Event`s from `Input`s, answers with the
  first matching command, or forwards the words to a bot service
  `<namespace>.<first word>` found in the registry. `help_command` lists the
  known commands.
- `microkit.plugin` — `Plugin`s built with `new_plugin` and `with_name`,
  `with_flag`, `with_command`, `with_handler`, `with_init`; a global
  `register`/`plugins` pair and `ComponentManager` for per-component plugins
  whose names must not clash with global ones.

## Example

```python
from wsgiref.simple_server import make_server

from microkit.commands import Environment, list_services, query_service, register_service
from microkit.rpc import Client, RpcHandler

client = Client()
client.handle("go.micro.srv.greeter", "Say.Hello",
              lambda request, metadata: {"msg": "Hello " + request["name"]})

env = Environment(client=client)
register_service(env, ['{"name": "go.micro.srv.greeter", '
                       '"nodes": [{"id": "greeter-1", "address": "127.0.0.1", "port": 9090}]}'])
print(list_services(env))
print(query_service(env, ["go.micro.srv.greeter", "Say.Hello", '{"name": "John"}']))

make_server("", 8080, RpcHandler(client)).serve_forever()
```

## What the package does not do

- It installs no command-line program; the commands are Python functions.
- It does not generate new service skeletons, and it does not fetch, build,
  run or supervise service processes.
- It does not run an HTTP server of its own: it provides WSGI applications
  and middleware for any WSGI server to host.
- The registry and the RPC client live in the current process; nothing is
  discovered or called over the network except through `proxy_address`.
- The bot ships no chat inputs; supply your own `Input` subclasses.

## Development

```
pip install -e ".[test]"
pytest
```