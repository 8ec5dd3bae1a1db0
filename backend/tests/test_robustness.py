import importlib
import os
import sqlite3
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app import settings
from app.models import CandidateSlot
from app.services.email_sender import EmailSender
from app.services.errors import SchedulingInternalError
from app.services.push_sender import PushSender
from app.services.schedule_store import ScheduleStore
from app.services.slot_advisor import SlotAdvisor


def test_auth_ttl_invalid_env_falls_back(monkeypatch):
    monkeypatch.setenv("AUTH_TOKEN_TTL_HOURS", "not-a-number")
    sys.modules.pop("app.auth", None)
    auth = importlib.import_module("app.auth")
    assert auth.TOKEN_TTL_HOURS == 24


def test_auth_ttl_non_positive_env_falls_back(monkeypatch):
    monkeypatch.setenv("AUTH_TOKEN_TTL_HOURS", "0")
    sys.modules.pop("app.auth", None)
    auth = importlib.import_module("app.auth")
    assert auth.TOKEN_TTL_HOURS == 24


def test_tampered_token_is_rejected():
    from app.auth import create_access_token, verify_access_token

    token, _ = create_access_token("client_1", role="client")
    assert verify_access_token(token).user_id == "client_1"
    payload, signature = token.split(".", 1)
    assert verify_access_token(payload + "." + signature[::-1]) is None
    assert verify_access_token("garbage") is None


def test_settings_helpers_ignore_bad_values(monkeypatch):
    monkeypatch.setenv("SLOTWISE_TEST_INT", "abc")
    monkeypatch.setenv("SLOTWISE_TEST_FLOAT", "-3")
    monkeypatch.setenv("SLOTWISE_TEST_CSV", " a, ,b ")
    assert settings._read_int_env("SLOTWISE_TEST_INT", 7) == 7
    assert settings._read_float_env("SLOTWISE_TEST_FLOAT", 5.0) == 5.0
    assert settings._parse_csv_env("SLOTWISE_TEST_CSV", "") == ["a", "b"]
    monkeypatch.setenv("SLOTWISE_TEST_INT", "0")
    assert settings._read_int_env("SLOTWISE_TEST_INT", 7) == 7
    assert settings._read_int_env("SLOTWISE_TEST_INT", 7, minimum=0) == 0


def test_store_read_failures_surface_as_internal_error(tmp_path, monkeypatch):
    store = ScheduleStore(db_path=str(tmp_path / "schedule.sqlite3"), read_retries=1, seed_demo=True)
    attempts = []

    def broken_connect(timeout=None):
        attempts.append(timeout)
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(store, "_connect", broken_connect)
    with pytest.raises(SchedulingInternalError):
        store.list_providers()
    assert len(attempts) == 2


def test_store_write_failures_roll_back(store):
    with pytest.raises(RuntimeError):
        with store.transaction() as conn:
            conn.execute("DELETE FROM availability_rules WHERE provider_id = 'prov_1'")
            raise RuntimeError("boom")
    assert len(store.list_rules("prov_1")) == 11


def test_unseeded_store_is_empty(tmp_path):
    store = ScheduleStore(db_path=str(tmp_path / "empty.sqlite3"))
    assert store.list_providers() == []


class ExplodingResponses:
    def create(self, **kwargs):
        raise ValueError("model returned garbage")


class ExplodingClient:
    responses = ExplodingResponses()


class CannedResponses:
    def __init__(self, text):
        self.text = text

    def create(self, **kwargs):
        return type("Response", (), {"output_text": self.text})()


class CannedClient:
    def __init__(self, text):
        self.responses = CannedResponses(text)


SLOTS = [
    CandidateSlot(start_time="09:00", end_time="09:30", service_duration=30),
    CandidateSlot(start_time="09:30", end_time="10:00", service_duration=30),
    CandidateSlot(start_time="10:00", end_time="10:30", is_available=False, service_duration=30),
]


def test_slot_advisor_without_key_uses_heuristic():
    source, scored = SlotAdvisor(api_key="").score(SLOTS)
    assert source == "heuristic"
    assert [(item.start_time, item.score) for item in scored] == [("09:00", 85), ("09:30", 70)]


def test_slot_advisor_falls_back_when_model_fails():
    source, scored = SlotAdvisor(client=ExplodingClient()).score(SLOTS)
    assert source == "heuristic"
    assert len(scored) == 2


def test_slot_advisor_uses_model_scores():
    text = '{"slots": [{"start_time": "09:30", "score": 95, "reason": "Quiet time"}, {"start_time": "11:00", "score": 99}]}'
    source, scored = SlotAdvisor(client=CannedClient(text)).score(SLOTS, {"date": "2030-01-07"})
    assert source == "ai"
    assert [(item.start_time, item.score, item.reason) for item in scored] == [
        ("09:30", 95, "Quiet time"),
        ("09:00", 85, "Round hour"),
    ]


def test_push_sender_disabled_without_credentials(monkeypatch):
    monkeypatch.delenv("FIREBASE_CREDENTIALS_PATH", raising=False)
    sender = PushSender()
    assert sender.enabled is False
    assert sender.send_notification(["tok"], "title", "body", {}) == []


def test_push_sender_survives_bad_credentials(tmp_path):
    sender = PushSender(credentials_path=str(tmp_path / "missing.json"))
    assert sender.enabled is False


def test_email_sender_disabled_without_host():
    sender = EmailSender(host="")
    assert sender.enabled is False
    assert sender.send("ana@example.com", "Hello", "Body") is False


def test_demo_seed_and_admins_are_opt_in(monkeypatch):
    monkeypatch.delenv("SCHEDULE_SEED_DEMO", raising=False)
    monkeypatch.delenv("ADMIN_USER_IDS", raising=False)
    try:
        fresh = importlib.reload(settings)
        assert fresh.SCHEDULE_SEED_DEMO is False
        assert fresh.ADMIN_USER_IDS == set()
    finally:
        monkeypatch.undo()
        importlib.reload(settings)
    assert "admin_1" in settings.ADMIN_USER_IDS
