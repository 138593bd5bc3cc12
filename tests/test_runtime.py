from __future__ import annotations

from models import MEMBERS, SERVICES
from runtime import EngineRuntime
from tests.conftest import member_row, service_row


def test_runtime_syncs_and_deactivates_on_background_loop(tmp_path):
    rt = EngineRuntime(tmp_path / "studio.db", scan_minutes=60)
    rt.start()
    try:
        assert rt.scheduler.is_running
        assert rt.ticker.running
        # scans are triggered by hand below
        assert rt.stop_scheduler() is True

        rt.remote.insert(SERVICES, service_row("s1", session_count=0))
        rt.remote.insert(MEMBERS, member_row("m1"))
        snap = rt.snapshot()
        assert snap.members["m1"].active is True
        assert not snap.stale

        # zero-session package is exhausted from the start
        result = rt.run_scan_now()
        assert result.writes == 1
        assert rt.snapshot().members["m1"].active is False

        assert rt.start_scheduler(10) is True
        assert rt.scheduler.period_minutes == 10
        assert rt.resync() is True
    finally:
        rt.shutdown()

    assert not rt.scheduler.is_running
    assert not rt.ticker.running


def test_drain_notifications_takes_everything_oldest_first(tmp_path):
    rt = EngineRuntime(tmp_path / "studio.db", scan_minutes=60)
    try:
        for i in range(5):
            rt.scheduler.notify("info", f"member {i} deactivated")

        drained = rt.drain_notifications()
        assert [n.message for n in drained] == [f"member {i} deactivated" for i in range(5)]
        assert len(rt.notifications) == 0

        rt.scheduler.notify("error", "scan failed")
        assert [n.level for n in rt.drain_notifications()] == ["error"]
        assert rt.drain_notifications() == []
    finally:
        rt.loop.close()
