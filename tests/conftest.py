import pytest

from paybound.facilitator import UpstreamResponse


class FakeFacilitator:
    """Records forwarded calls and answers with a canned response."""

    def __init__(self, status_code=200, body=None, error=None):
        self.status_code = status_code
        self.body = {"isValid": True} if body is None else body
        self.error = error
        self.calls = []
        self.closed = False

    def _answer(self, endpoint, payload, authorization):
        self.calls.append((endpoint, payload, authorization))
        if self.error is not None:
            raise self.error
        return UpstreamResponse(status_code=self.status_code, body=self.body)

    def verify(self, payload, authorization=None):
        return self._answer("verify", payload, authorization)

    def settle(self, payload, authorization=None):
        return self._answer("settle", payload, authorization)

    def close(self):
        self.closed = True


@pytest.fixture
def upstream():
    return FakeFacilitator()
