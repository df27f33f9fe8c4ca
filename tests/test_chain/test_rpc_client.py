import asyncio
import json

import httpx
import pytest

from proofvault.chain.rpc_client import JsonRpcAnchorClient, parse_receipt
from proofvault.errors import CollaboratorError


def _client(handler, **kwargs) -> JsonRpcAnchorClient:
    return JsonRpcAnchorClient("http://node.test", transport=httpx.MockTransport(handler), **kwargs)


def test_submit_sends_json_rpc_envelope():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "0xfeed"})

    tx_id = asyncio.run(_client(handler).submit("0xabc"))

    assert tx_id == "0xfeed"
    assert seen[0]["jsonrpc"] == "2.0"
    assert seen[0]["method"] == "nil_sendRawTransaction"
    assert seen[0]["params"] == ["0xabc"]


def test_method_names_are_configurable():
    methods = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(json.loads(request.content)["method"])
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": None})

    client = _client(handler, submit_method="eth_sendRawTransaction", receipt_method="eth_getTransactionReceipt")
    assert asyncio.run(client.get_receipt("0x1")) is None
    assert methods == ["eth_getTransactionReceipt"]


@pytest.mark.parametrize(
    "response,kind",
    [
        (httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "nope"}}), "unsupported"),
        (httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "bad"}}), "rejected"),
        (httpx.Response(503, text="busy"), "unavailable"),
        (httpx.Response(404, text="no such path"), "unsupported"),
        (httpx.Response(401, text="denied"), "rejected"),
        (httpx.Response(200, text="<html>"), "invalid_response"),
        (httpx.Response(200, json={"jsonrpc": "2.0", "id": 1}), "invalid_response"),
        (httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": ""}), "invalid_response"),
    ],
)
def test_submit_failures_are_classified(response, kind):
    with pytest.raises(CollaboratorError) as excinfo:
        asyncio.run(_client(lambda request: response).submit("0xabc"))

    assert excinfo.value.kind == kind


def test_timeouts_and_connection_errors():
    def timeout(request):
        raise httpx.ReadTimeout("slow", request=request)

    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(CollaboratorError) as slow:
        asyncio.run(_client(timeout).submit("0x1"))
    with pytest.raises(CollaboratorError) as down:
        asyncio.run(_client(refused).submit("0x1"))

    assert slow.value.kind == "timeout"
    assert down.value.kind == "unavailable"


def test_parse_receipt():
    assert parse_receipt("0x1", None) is None
    assert parse_receipt("0x1", {"blockNumber": None}) is None

    mined = parse_receipt("0x1", {"blockNumber": "0x10", "status": "0x1"})
    reverted = parse_receipt("0x1", {"blockNumber": "0x10", "status": "0x0"})

    assert mined.block_height == 16
    assert mined.succeeded
    assert not reverted.succeeded

    with pytest.raises(CollaboratorError):
        parse_receipt("0x1", {"blockNumber": "0xzz"})
    with pytest.raises(CollaboratorError):
        parse_receipt("0x1", ["not", "a", "dict"])
