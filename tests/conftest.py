"""Shared fixtures: an in-memory transport standing in for the network."""

from threading import Lock

import pytest

from site_mirror import FetchResponse, Settings, Transport, TransportError


def page(url, body=b"", content_type="text/html; charset=utf-8", final_url=None, status=200):
    if isinstance(body, str):
        body = body.encode("utf-8")
    return FetchResponse(
        requested_url=url,
        final_url=final_url or url,
        status=status,
        content_type=content_type,
        body=body,
    )


class FakeTransport(Transport):
    """Serves canned responses; unknown URLs fail like a 404."""

    def __init__(self, responses):
        self.responses = {r.requested_url: r for r in responses}
        self.calls = []
        self.closed = False
        self._lock = Lock()

    def get(self, url):
        with self._lock:
            self.calls.append(url)
        response = self.responses.get(url)
        if response is None:
            raise TransportError(url, "404 Client Error: Not Found")
        return response

    def close(self):
        self.closed = True


@pytest.fixture
def settings(tmp_path):
    return Settings(
        site="example.com",
        output_directory=str(tmp_path),
        workers=4,
        sanitize_filenames=False,
    )
