# tests/test_admission.py

from __future__ import annotations

from notice_relay.connectors.admission import AdmissionControl
from notice_relay.connectors.connection_registry import ConnectionRegistry, owner_identity
from notice_relay.core.ports import CLOSE_POLICY_VIOLATION

from .fakes import FakeConnection


def test_counter_tracks_open_connections_and_limit() -> None:
    ac = AdmissionControl(max_connections_per_ip=2)

    assert ac.on_connect_attempt("1.2.3.4", None).accepted
    assert ac.on_connect_attempt("1.2.3.4", None).accepted
    assert ac.count("1.2.3.4") == 2

    rejected = ac.on_connect_attempt("1.2.3.4", None)
    assert not rejected.accepted
    assert rejected.code == CLOSE_POLICY_VIOLATION
    assert ac.count("1.2.3.4") == 2

    # other sources are independent
    assert ac.on_connect_attempt("5.6.7.8", None).accepted

    assert ac.release("1.2.3.4") == 1
    assert ac.release("1.2.3.4") == 0
    assert "1.2.3.4" not in ac.counts()

    # never negative
    assert ac.release("1.2.3.4") == 0
    assert ac.count("1.2.3.4") == 0


def test_origin_allow_list() -> None:
    ac = AdmissionControl(
        origin_check_enabled=True,
        allowed_origins=["https://app.example.com/", "https://other.example.com"],
    )

    assert ac.on_connect_attempt("1.1.1.1", "https://app.example.com").accepted
    denied = ac.on_connect_attempt("1.1.1.1", "https://evil.example.com")
    assert not denied.accepted and denied.code == CLOSE_POLICY_VIOLATION
    assert not ac.on_connect_attempt("1.1.1.1", None).accepted
    assert ac.count("1.1.1.1") == 1


def test_origin_ignored_when_check_disabled() -> None:
    ac = AdmissionControl(origin_check_enabled=False, allowed_origins=["https://app.example.com"])
    assert ac.on_connect_attempt("1.1.1.1", "https://anything.example.com").accepted
    assert ac.on_connect_attempt("1.1.1.1", None).accepted


def test_registry_keeps_both_directions_in_step() -> None:
    reg = ConnectionRegistry()
    conn = FakeConnection()
    owner = owner_identity("10.0.0.1", 4000)
    assert owner == "10.0.0.1:4000"

    reg.register(owner, "10.0.0.1", conn)
    reg.assign_task(owner, "t1")
    reg.assign_task(owner, "t2")
    assert reg.owner_of_task("t1") == owner
    assert reg.connection_for_task("t2") is conn

    reg.release_task("t1")
    assert reg.owner_of_task("t1") is None
    assert reg.get(owner).task_ids == {"t2"}

    conn.open = False
    assert reg.connection_for(owner) is None

    record = reg.unregister(owner)
    assert record is not None and record.task_ids == {"t2"}
    assert reg.owner_of_task("t2") is None
    assert reg.unregister(owner) is None
    assert len(reg) == 0


def test_assign_to_unknown_owner_is_ignored() -> None:
    reg = ConnectionRegistry()
    reg.assign_task("ghost:1", "t1")
    assert reg.owner_of_task("t1") is None
