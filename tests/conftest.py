import json

import pytest
import requests

import update_draws


class FakeResponse:
    def __init__(self, body="", status=200):
        self.status_code = status
        self.text = body if isinstance(body, str) else json.dumps(body)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


class FakeSession:
    """
    routes: url -> list of FakeResponse / Exception, consumed in order (last one repeats).
    Unknown urls raise ConnectionError.
    """

    def __init__(self, routes=None):
        self.routes = {k: list(v) for k, v in (routes or {}).items()}
        self.calls = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def get(self, url, headers=None, timeout=None):
        self.calls.append(url)
        queue = self.routes.get(url)
        if not queue:
            raise requests.ConnectionError(f"no route for {url}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item


OFFICIAL = "https://official.test/draw?drwNo={drwNo}"
MIRROR = "https://mirror.test/all.json"


def mirror_item(n, numbers=(1, 2, 3, 4, 5, 6), bonus=7, date="2020-01-01T00:00:00Z"):
    return {"draw_no": n, "numbers": list(numbers), "bonus_no": bonus, "date": date}


def official_item(n, numbers=(1, 2, 3, 4, 5, 6), bonus=7, date="2024-01-06"):
    js = {"returnValue": "success", "drwNo": n, "bnusNo": bonus, "drwNoDate": date}
    for i, v in enumerate(numbers, start=1):
        js[f"drwtNo{i}"] = v
    return js


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr(update_draws.time, "sleep", sleeps.append)
    return sleeps


@pytest.fixture
def settings(tmp_path):
    return update_draws.Settings(
        out_path=str(tmp_path / "data" / "lotto_draws.json"),
        mirror_url=MIRROR,
        official_url_template=OFFICIAL,
        attempts=3,
        backoff=0.6,
        timeout=5,
        window=5,
    )
