"""Unit tests for OdosQuoteClient."""

import asyncio

import aiohttp
import pytest
from dloop.adapters.odos_quote_client import OdosQuoteClient, OdosQuoteError


class FakeResponse:
    def __init__(self, payload):
        self.payload = payload

    def raise_for_status(self):
        pass

    async def json(self):
        return self.payload

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Serves canned JSON per path, failing the first `failures` requests."""

    def __init__(self, responses, failures=0):
        self.responses = responses
        self.failures = failures
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append((url, json))
        if self.failures:
            self.failures -= 1
            raise aiohttp.ClientConnectionError("connection reset")
        path = url.split("api.test", 1)[1]
        return FakeResponse(self.responses[path])


QUOTE = {"pathId": "abc123", "inAmounts": ["1000"], "outAmounts": ["995"]}
ASSEMBLED = {"transaction": {"data": "0xdeadbeef"}}


def make_client(session, max_retries=3):
    return OdosQuoteClient(
        chain_id=146,
        user_address="0xvault",
        odos_endpoint="https://api.test/",
        max_retries=max_retries,
        session=session,
    )


@pytest.fixture
def no_sleep(monkeypatch):
    async def instant(_seconds):
        return None

    monkeypatch.setattr("dloop.adapters.odos_quote_client.asyncio.sleep", instant)


def test_routing_payload_is_quoted_and_assembled():
    """Test that a quote followed by assemble yields the routing payload."""
    session = FakeSession({"/sor/quote/v2": QUOTE, "/sor/assemble": ASSEMBLED})
    client = make_client(session)

    payload = asyncio.run(client.get_routing_payload("0xin", "0xout", 1000))

    assert payload.path_id == "abc123"
    assert payload.amount_in == 1000 and payload.amount_out == 995
    assert payload.to_bytes() == bytes.fromhex("deadbeef"), "Calldata should be decoded"
    assert [call[0] for call in session.calls] == [
        "https://api.test/sor/quote/v2",
        "https://api.test/sor/assemble",
    ]
    assert session.calls[0][1]["inputTokens"][0]["amount"] == "1000", "Amounts are sent as strings"


def test_transient_errors_are_retried(no_sleep):
    """Test that a transport error is retried."""
    session = FakeSession({"/sor/quote/v2": QUOTE, "/sor/assemble": ASSEMBLED}, failures=2)
    payload = asyncio.run(make_client(session).get_routing_payload("0xin", "0xout", 1000))

    assert payload.path_id == "abc123"
    assert len(session.calls) == 4, "Two failures then quote and assemble"


def test_gives_up_after_max_retries(no_sleep):
    """Test that persistent failures raise OdosQuoteError."""
    session = FakeSession({}, failures=10)
    with pytest.raises(OdosQuoteError):
        asyncio.run(make_client(session, max_retries=2).get_routing_payload("0xin", "0xout", 1000))
    assert len(session.calls) == 2


def test_missing_path_is_an_error():
    """Test that a quote without a path id is rejected before assembling."""
    session = FakeSession({"/sor/quote/v2": {"pathId": None}})
    with pytest.raises(OdosQuoteError):
        asyncio.run(make_client(session).get_routing_payload("0xin", "0xout", 1000))
    assert len(session.calls) == 1
