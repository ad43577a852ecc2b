import pytest

from microkit.helper import acme_hosts, request_to_metadata, tls_config


def test_request_to_metadata():
    metadata = request_to_metadata({"foo1": ["bar"], "foo2": ["bar", "baz"]})
    assert metadata["foo1"] == "bar"
    assert metadata["foo2"] == "bar,baz"


def test_request_to_metadata_accepts_strings():
    assert request_to_metadata({"Foo": "Bar"}) == {"Foo": "Bar"}


def test_acme_hosts_drops_empty():
    assert acme_hosts("a.example.com,,b.example.com") == ["a.example.com", "b.example.com"]


def test_acme_hosts_empty():
    assert acme_hosts("") == []


@pytest.mark.parametrize("cert,key", [("", ""), ("cert.pem", ""), ("", "key.pem"), (None, None)])
def test_tls_config_requires_files(cert, key):
    with pytest.raises(ValueError, match="TLS certificate and key files not specified"):
        tls_config(cert, key)


def test_tls_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        tls_config(str(tmp_path / "missing.crt"), str(tmp_path / "missing.key"))