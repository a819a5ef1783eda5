import json
import threading

import pytest
import requests

NOW_MS = 1_760_000_000_000


class FakeRaw:
    def __init__(self):
        self.shut_down = threading.Event()

    def shutdown(self):
        self.shut_down.set()


class FakeResponse:
    """Stands in for a streamed ``requests.Response``.

    With ``stall=True`` the body blocks after the first chunk until
    ``raw.shutdown()`` is called, like a socket read that never completes.
    """

    def __init__(self, status_code=200, body=b"", stall=False):
        self.status_code = status_code
        if not isinstance(body, bytes):
            body = json.dumps(body).encode("utf-8")
        self._body = body
        self._stall = stall
        self.raw = FakeRaw()
        self.closed = False

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self._body), chunk_size):
            yield self._body[start:start + chunk_size]
            if self._stall:
                self.raw.shut_down.wait(5)
                raise requests.exceptions.ConnectionError("socket shut down")

    def close(self):
        self.closed = True


class FakeSession:
    """Records the single GET made by the fetcher."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []
        self.closed = False

    def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response

    def close(self):
        self.closed = True


def entry(sgv=95, direction="Flat", minutes_old=5, **extra):
    data = {"sgv": sgv, "direction": direction, "date": NOW_MS - minutes_old * 60000}
    data.update(extra)
    return data


@pytest.fixture
def ns_env():
    return {"NIGHTSCOUT_URL": "https://ns.example.com"}
