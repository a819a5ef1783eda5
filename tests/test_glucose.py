import logging

import pytest
import requests

import nightscout
from glucose import APOLOGY, SpeechResult, handle_glucose_query

from conftest import NOW_MS, FakeResponse, FakeSession, entry


def test_success_sentence(ns_env):
    session = FakeSession(FakeResponse(200, [entry(sgv=95, direction="Flat", minutes_old=5)]))
    result = handle_glucose_query(ns_env, session=session, now_ms=NOW_MS)
    assert result == SpeechResult(
        speech="Your glucose is 95 milligrams per decilitre and steady.", ok=True
    )


def test_units_read_from_environment(ns_env):
    ns_env["UNITS"] = "mmol"
    session = FakeSession(FakeResponse(200, [entry(sgv=180, direction="NOT COMPUTABLE")]))
    result = handle_glucose_query(ns_env, session=session, now_ms=NOW_MS)
    assert result.speech == "Your glucose is 10.0 millimoles per litre."


def test_config_is_read_on_every_call(ns_env):
    first = FakeSession(FakeResponse(200, [entry()]))
    handle_glucose_query(ns_env, session=first, now_ms=NOW_MS)

    ns_env["NIGHTSCOUT_URL"] = "https://other.example.com"
    second = FakeSession(FakeResponse(200, [entry()]))
    handle_glucose_query(ns_env, session=second, now_ms=NOW_MS)

    assert first.calls[0][0].startswith("https://ns.example.com/")
    assert second.calls[0][0].startswith("https://other.example.com/")


@pytest.mark.parametrize(
    "session",
    [
        FakeSession(FakeResponse(401, b"")),
        FakeSession(FakeResponse(500, b"")),
        FakeSession(FakeResponse(200, [])),
        FakeSession(FakeResponse(200, b"garbage")),
        FakeSession(FakeResponse(200, b'[{"sgv": Infinity, "direction": "Flat"}]')),
        FakeSession(error=requests.exceptions.ConnectionError("reset")),
        FakeSession(error=requests.exceptions.ReadTimeout("slow")),
    ],
)
def test_every_failure_is_the_same_apology(ns_env, session):
    result = handle_glucose_query(ns_env, session=session, now_ms=NOW_MS)
    assert result == SpeechResult(speech=APOLOGY, ok=False)


def test_missing_url_apologises_without_network(monkeypatch):
    def no_network():
        raise AssertionError("no session should be opened")

    monkeypatch.setattr(nightscout.requests, "Session", no_network)
    assert handle_glucose_query({}, now_ms=NOW_MS).ok is False


def test_failure_is_logged_but_token_is_not(ns_env, caplog):
    ns_env["NIGHTSCOUT_TOKEN"] = "hunter2"
    session = FakeSession(FakeResponse(401, b""))
    with caplog.at_level(logging.INFO):
        handle_glucose_query(ns_env, session=session, now_ms=NOW_MS)

    assert "AuthError" in caplog.text
    assert "hunter2" not in caplog.text
