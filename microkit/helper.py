"""Small helpers shared by the HTTP front ends."""

from __future__ import annotations

import ssl
from typing import Iterable, Mapping


def acme_hosts(value: str) -> list[str]:
    """Split a comma separated host list, dropping empty entries."""
    return [host for host in (value or "").split(",") if host]


def request_to_metadata(headers: Mapping[str, "str | Iterable[str]"]) -> dict[str, str]:
    """Turn request headers into call metadata, joining repeated values with commas."""
    metadata = {}
    for key, values in headers.items():
        if isinstance(values, str):
            metadata[key] = values
        else:
            metadata[key] = ",".join(values)
    return metadata


def tls_config(cert_file: str | None, key_file: str | None, ca_file: str | None = None) -> ssl.SSLContext:
    """Build a server TLS context; a CA file makes client certificates mandatory."""
    if not cert_file or not key_file:
        raise ValueError("TLS certificate and key files not specified")

    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    context.load_cert_chain(certfile=cert_file, keyfile=key_file)

    if ca_file:
        context.load_verify_locations(cafile=ca_file)
        context.verify_mode = ssl.CERT_REQUIRED

    return context