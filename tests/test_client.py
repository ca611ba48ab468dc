import logging

import httpx
import pytest

from client import PASSWORD_KEY, CalendarStateHolder, PasswordStorage
from schemas import CalendarConfiguration, HolidaySummary


@pytest.fixture
def passwords():
    return PasswordStorage()


@pytest.fixture
def holder(client, passwords):
    return CalendarStateHolder(client, passwords)


def test_open_without_id_creates_state(holder, passwords, store):
    state_id = holder.open()
    assert state_id
    assert holder.has_edit_access is True
    assert passwords.get(state_id)
    assert store.get(state_id)["password"] == passwords.get(state_id)


def test_open_with_id_loads_as_viewer(client, store, sample_state):
    state_id = client.post(
        "/api/state", json={"state": dict(sample_state, selectedYear=2031), "password": "owner"}
    ).json()["id"]

    viewer = CalendarStateHolder(client, PasswordStorage())
    assert viewer.open(state_id) == state_id
    assert viewer.state.selected_year == 2031
    assert viewer.has_edit_access is False

    # viewers never write
    viewer.update(selected_year=1990)
    assert viewer.save() is None
    assert store.get(state_id)["state"]["selectedYear"] == 2031


def test_reopen_with_stored_password_can_edit(client, passwords):
    first = CalendarStateHolder(client, passwords)
    state_id = first.open()

    second = CalendarStateHolder(client, passwords)
    second.open(state_id)
    assert second.has_edit_access is True
    with second.edit():
        second.update(hide_weekend_colors=True)

    third = CalendarStateHolder(client, PasswordStorage())
    third.load(state_id)
    assert third.state.hide_weekend_colors is True


def test_update_returns_new_snapshot(holder):
    before = holder.state
    change = holder.update(selected_year=before.selected_year + 1)
    assert change.changed is True
    assert change.state is holder.state
    assert change.state.selected_year == before.selected_year + 1
    assert before.selected_year == change.state.selected_year - 1


def test_value_equal_update_is_not_a_change(holder):
    holder.update(holiday_summary={"hrDays": [{"date": "2024-05-01"}], "fdDays": []})
    change = holder.update(
        holiday_summary=HolidaySummary(hr_days=[{"date": "2024-05-01"}], fd_days=[])
    )
    assert change.changed is False


def test_update_rejects_unknown_fields(holder):
    with pytest.raises(TypeError):
        holder.update(password="x")
    with pytest.raises(TypeError):
        holder.update(selectedyear=2020)


def test_edit_saves_once_after_batch(holder, monkeypatch):
    holder.open()
    calls = []
    real_save = holder.save
    monkeypatch.setattr(holder, "save", lambda: calls.append(1) or real_save())

    with holder.edit():
        holder.update(selected_year=2027)
        holder.update(hide_weekend_colors=True)
        holder.update(day_states={"2027-03-04": "busy"})
    assert calls == [1]


def test_edit_without_changes_does_not_save(holder, monkeypatch):
    holder.open()
    calls = []
    monkeypatch.setattr(holder, "save", lambda: calls.append(1))
    with holder.edit():
        holder.update(selected_year=holder.state.selected_year)
    assert calls == []


def test_edit_before_creation_does_not_save(holder, store):
    with holder.edit():
        holder.update(selected_year=2020)
    assert holder.state_id is None
    assert len(store) == 0


def test_saved_state_round_trips(holder, client):
    holder.open()
    with holder.edit():
        holder.update(
            selected_year=2026,
            holiday_summary={"hrDays": [{"day": 1}], "fdDays": [{"day": 2}]},
            day_states={"2026-01-01": "holiday"},
        )

    state = client.get("/api/state", params={"id": holder.state_id}).json()["state"]
    assert state["selectedYear"] == 2026
    assert state["holidaySummary"] == {"hrDays": [{"day": 1}], "fdDays": [{"day": 2}]}
    assert state["dayStates"] == {"2026-01-01": "holiday"}
    assert "password" not in state


def test_load_failure_leaves_state_unchanged(holder, caplog):
    before = holder.state
    with caplog.at_level(logging.ERROR, logger="client"):
        assert holder.load("missing") is False
    assert holder.state is before
    assert holder.has_edit_access is False
    assert "Failed to load state" in caplog.text


def test_load_keeps_day_states_when_absent(client, passwords):
    state_id = client.post(
        "/api/state", json={"state": {"selectedYear": 2024}, "password": "p"}
    ).json()["id"]
    holder = CalendarStateHolder(
        client, passwords, state=CalendarConfiguration(day_states={"2024-02-02": "x"})
    )
    holder.load(state_id)
    assert holder.state.day_states == {"2024-02-02": "x"}


def test_save_failure_is_swallowed(passwords, caplog):
    def handler(request):
        return httpx.Response(500, json={"detail": "Failed to save calendar state"})

    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://calendar.test")
    holder = CalendarStateHolder(http, passwords)
    with caplog.at_level(logging.ERROR, logger="client"):
        assert holder.save() is None
    assert holder.state_id is None
    assert holder.has_edit_access is False
    assert "Failed to save state" in caplog.text


def test_network_error_is_swallowed(passwords):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://calendar.test")
    holder = CalendarStateHolder(http, passwords)
    assert holder.open() is None
    assert holder.load("abc") is False


def test_rejected_update_keeps_access_flags(client, sample_state, passwords):
    state_id = client.post("/api/state", json={"state": sample_state, "password": "real"}).json()["id"]
    passwords.set(state_id, "stale")

    holder = CalendarStateHolder(client, passwords)
    holder.open(state_id)
    assert holder.has_edit_access is True
    holder.update(selected_year=2000)
    assert holder.save() is None
    assert client.get("/api/state", params={"id": state_id}).json()["state"]["selectedYear"] == 2024


def test_share_copies_viewer_url(client, passwords):
    copied, shared = [], []
    holder = CalendarStateHolder(
        client, passwords, origin="https://cal.example/", clipboard=copied.append, on_share=shared.append
    )
    assert holder.share() is None

    state_id = holder.open()
    url = holder.share()
    assert url == f"https://cal.example/?id={state_id}"
    assert copied == [url]
    assert shared == [url]


def test_share_defaults_to_http_base_url(holder):
    state_id = holder.open()
    assert holder.share() == f"http://testserver/?id={state_id}"


def test_password_storage_persists_to_file(tmp_path):
    path = tmp_path / "local" / "storage.json"
    storage = PasswordStorage(path)
    storage.set("abc", "secret")

    reopened = PasswordStorage(path)
    assert reopened.get("abc") == "secret"
    assert PASSWORD_KEY + "abc" in path.read_text()

    reopened.remove("abc")
    assert PasswordStorage(path).get("abc") is None


def test_password_storage_ignores_corrupt_file(tmp_path):
    path = tmp_path / "storage.json"
    path.write_text("{broken")
    assert PasswordStorage(path).get("abc") is None


def _holder_answering(passwords, status, payload):
    def handler(request):
        return httpx.Response(status, json=payload)

    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://calendar.test")
    return CalendarStateHolder(http, passwords)


def test_load_with_non_object_body_is_swallowed(passwords, caplog):
    holder = _holder_answering(passwords, 200, [1])
    before = holder.state
    with caplog.at_level(logging.ERROR, logger="client"):
        assert holder.load("abc") is False
    assert holder.state is before
    assert "Failed to load state" in caplog.text


def test_load_with_non_object_state_is_swallowed(passwords):
    holder = _holder_answering(passwords, 200, {"state": "nope"})
    assert holder.load("abc") is False


def test_save_with_non_object_body_is_swallowed(passwords, caplog):
    holder = _holder_answering(passwords, 200, "ok")
    with caplog.at_level(logging.ERROR, logger="client"):
        assert holder.save() is None
    assert holder.state_id is None
    assert "Failed to save state" in caplog.text


def test_save_with_non_string_id_is_swallowed(passwords):
    holder = _holder_answering(passwords, 200, {"id": 123})
    assert holder.save() is None
    assert holder.state_id is None
    assert holder.has_edit_access is False
