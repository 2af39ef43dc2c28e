"""Tests for the upstream facilitator client."""

import json
from types import SimpleNamespace

import httpx
import pytest

from paybound.errors import UpstreamError, UpstreamTimeoutError
from paybound.facilitator import FacilitatorClient


def make_client(handler, **kwargs):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return FacilitatorClient(base_url="https://facilitator.test/x402/", http=http, **kwargs)


class Recorder:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.body = {"isValid": True} if body is None else body
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)


class TestForwarding:
    def test_verify_posts_json_to_verify_endpoint(self):
        recorder = Recorder()
        client = make_client(recorder)
        result = client.verify({"amount": "1"})

        request = recorder.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://facilitator.test/x402/verify"
        assert json.loads(request.content) == {"amount": "1"}
        assert request.headers["content-type"] == "application/json"
        assert result.status_code == 200
        assert result.body == {"isValid": True}

    def test_settle_endpoint(self):
        recorder = Recorder(body={"success": True})
        make_client(recorder).settle({"x": 1})
        assert recorder.requests[0].url.path == "/x402/settle"

    def test_caller_authorization_forwarded(self):
        recorder = Recorder()
        make_client(recorder).verify({}, authorization="Bearer caller")
        assert recorder.requests[0].headers["authorization"] == "Bearer caller"

    def test_no_authorization_by_default(self):
        recorder = Recorder()
        make_client(recorder).verify({})
        assert "authorization" not in recorder.requests[0].headers

    @pytest.mark.parametrize("status", [400, 401, 500])
    def test_error_status_passed_back_verbatim(self, status):
        recorder = Recorder(status_code=status, body={"error": "nope"})
        result = make_client(recorder).verify({})
        assert result.status_code == status
        assert result.body == {"error": "nope"}


class TestAuthProvider:
    def provider(self):
        headers = SimpleNamespace(
            verify={"Authorization": "Bearer verify-jwt"},
            settle={"Authorization": "Bearer settle-jwt"},
        )
        return SimpleNamespace(get_auth_headers=lambda: headers)

    def test_provider_headers_per_endpoint(self):
        recorder = Recorder()
        client = make_client(recorder, auth_provider=self.provider())
        client.verify({})
        client.settle({})
        assert recorder.requests[0].headers["authorization"] == "Bearer verify-jwt"
        assert recorder.requests[1].headers["authorization"] == "Bearer settle-jwt"

    def test_caller_authorization_wins(self):
        recorder = Recorder()
        client = make_client(recorder, auth_provider=self.provider())
        client.verify({}, authorization="Bearer caller")
        assert recorder.requests[0].headers["authorization"] == "Bearer caller"

    def test_from_facilitator_config(self):
        config = SimpleNamespace(url="https://cdp.test/platform/v2/x402", auth_provider=None)
        client = FacilitatorClient.from_facilitator_config(config, timeout_seconds=5)
        try:
            assert client.base_url == "https://cdp.test/platform/v2/x402"
            assert client.timeout_seconds == 5
            assert client.auth_provider is None
        finally:
            client.close()


class TestFailures:
    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(UpstreamTimeoutError, match="timed out"):
            make_client(handler).verify({})

    def test_timeout_is_an_upstream_error(self):
        def handler(request):
            raise httpx.ConnectTimeout("slow", request=request)

        with pytest.raises(UpstreamError):
            make_client(handler).settle({})

    def test_connection_refused(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UpstreamError, match="ConnectError") as exc:
            make_client(handler).verify({})
        assert not isinstance(exc.value, UpstreamTimeoutError)

    def test_non_json_body(self):
        def handler(request):
            return httpx.Response(502, text="<html>Bad Gateway</html>")

        with pytest.raises(UpstreamError, match="non-JSON") as exc:
            make_client(handler).verify({})
        assert "Bad Gateway" in str(exc.value)

    def test_close(self):
        client = make_client(Recorder())
        with client:
            pass
        with pytest.raises(RuntimeError):
            client._http.post("https://facilitator.test/verify")
