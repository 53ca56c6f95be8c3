from __future__ import annotations

import allure
import pytest

from harmony_codeserver.codeserver.endpoint import (
    Endpoint,
    EndpointScheme,
    parse_endpoint,
    parse_optional_endpoint,
)
from harmony_codeserver.codeserver.errors import ConfigurationError, InvalidEndpoint

pytestmark = [
    allure.epic("Code Server"),
    allure.feature("Endpoints"),
]


def test_dir_endpoint_has_only_a_path() -> None:
    endpoint = parse_endpoint("dir:///var/tmp/codegen")

    assert endpoint == Endpoint(scheme=EndpointScheme.DIR, path="/var/tmp/codegen")
    assert endpoint.host == endpoint.user == endpoint.port == ""
    assert not endpoint.is_remote


def test_ssh_endpoint_with_user_host_port_and_path() -> None:
    endpoint = parse_endpoint("ssh://tuner@node7:2222/scratch/out")

    assert endpoint.scheme is EndpointScheme.SSH
    assert endpoint.user == "tuner"
    assert endpoint.host == "node7"
    assert endpoint.port == "2222"
    assert endpoint.path == "scratch/out"
    assert endpoint.scp_destination() == "tuner@node7:scratch/out"


def test_ssh_endpoint_double_slash_keeps_absolute_path() -> None:
    endpoint = parse_endpoint("ssh://node7//scratch/out")

    assert endpoint.host == "node7"
    assert endpoint.user == ""
    assert endpoint.port == ""
    assert endpoint.path == "/scratch/out"
    assert endpoint.scp_destination() == "node7:/scratch/out"


def test_endpoint_str_round_trips() -> None:
    for text in ("dir:///tmp/x", "ssh://u@h:22/p", "ssh://h//abs"):
        assert str(parse_endpoint(text)) == text


@pytest.mark.parametrize(
    "text",
    [
        "tcp://node7:2000",
        "http://node7/path",
        "/just/a/path",
        "dir://",
        "ssh://node7",
        "ssh://node7/",
        "ssh:///path",
        "ssh://@node7/path",
        "ssh://node7:abc/path",
        "ssh://node7:/path",
    ],
)
def test_malformed_endpoints_are_rejected(text: str) -> None:
    with pytest.raises(InvalidEndpoint):
        parse_endpoint(text)


def test_invalid_endpoint_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        parse_endpoint("tcp://node7:2000")


def test_optional_endpoint_blank_means_local_results() -> None:
    assert parse_optional_endpoint(None) is None
    assert parse_optional_endpoint("   ") is None
    assert parse_optional_endpoint("dir:///tmp/reply") == Endpoint(
        scheme=EndpointScheme.DIR,
        path="/tmp/reply",
    )
