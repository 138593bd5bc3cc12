"""
app.py
Streamlit operations console for the studio (live appointments, members, reports).
Run: streamlit run app.py
"""

from __future__ import annotations

from datetime import date

import pandas as pd
import streamlit as st

import config
import derived
import packages
import utils
import views
from models import STATUS_IN_PROGRESS
from runtime import EngineRuntime

st.set_page_config(page_title="Studio Console", layout="wide")


@st.cache_resource
def get_runtime() -> EngineRuntime:
    config.setup_logging()
    rt = EngineRuntime()
    rt.start()
    return rt


def show_notifications(rt: EngineRuntime):
    for n in rt.drain_notifications():
        if n.level == "error":
            st.toast(f"⚠️ {n.message}")
        else:
            st.toast(n.message)


# ---------- Pages ----------

@st.fragment(run_every=config.TICK_SECONDS)
def live_widget(rt: EngineRuntime):
    snap = rt.snapshot()
    visible = rt.latest_views
    ordered = [v.appointment for v in visible]
    window = {a.id for a in views.dashboard_slice(ordered)}

    if snap.stale:
        st.warning("Live feed is resynchronizing, showing last known data.")

    rows = []
    for v in visible:
        if v.appointment.id not in window:
            continue
        a = v.appointment
        member = snap.members.get(a.member_id)
        trainer = snap.trainers.get(a.trainer_id)
        service = snap.services.get(a.service_id)
        rows.append(
            {
                "time": a.time.strftime("%H:%M"),
                "member": member.full_name if member else a.member_id,
                "trainer": trainer.full_name if trainer else a.trainer_id,
                "service": service.name if service else a.service_id,
                "status": a.status,
                "live": derived.describe(v.annotation),
            }
        )
    if rows:
        st.dataframe(pd.DataFrame(rows), use_container_width=True, hide_index=True)
    else:
        st.caption("No appointments today.")


def dashboard_page(rt: EngineRuntime):
    st.header("📊 Dashboard")

    snap = rt.snapshot()
    counts = views.window_counts(snap.appointments)
    running = sum(1 for a in snap.appointments if a.status == STATUS_IN_PROGRESS)
    active_members = sum(1 for m in snap.members.values() if m.active)

    c1, c2, c3 = st.columns(3)
    c1.metric("Appointments today", counts["today"])
    c2.metric("In progress", running)
    c3.metric("Active members", active_members)

    st.divider()
    st.subheader("Active appointments")
    live_widget(rt)


def appointments_page(rt: EngineRuntime):
    st.header("📅 Appointments")

    snap = rt.snapshot()
    counts = views.window_counts(snap.appointments)

    with st.sidebar:
        st.subheader("Filters")
        window = st.radio(
            "Date",
            views.DATE_FILTERS,
            index=1,
            format_func=lambda w: f"{w} ({counts[w]})",
        )
        search = st.text_input("Search (member / trainer / service)")
        trainer_opts = {"All trainers": None}
        trainer_opts.update({t.full_name: t.id for t in snap.trainers.values()})
        trainer_label = st.selectbox("Trainer", list(trainer_opts.keys()))

    filtered = views.filter_appointments(
        snap.appointments,
        snap.members,
        snap.trainers,
        snap.services,
        window=window,
        search=search,
        trainer_id=trainer_opts[trainer_label],
    )
    groups = views.group_by_status(filtered)
    if not groups:
        st.caption("No appointments match the filters.")
        return

    for status, items in groups.items():
        st.subheader(f"{status} ({len(items)})")
        df = utils.appointments_frame(items, snap.members, snap.trainers, snap.services)
        st.dataframe(df.drop(columns=["id"]), use_container_width=True, hide_index=True)


def members_page(rt: EngineRuntime):
    st.header("👥 Members")

    snap = rt.snapshot()
    with st.sidebar:
        st.subheader("Search & Filters")
        search = st.text_input("Search (name)")
        status_filter = st.selectbox("Status", ["All", "active", "inactive"])

    rows = []
    for m in sorted(snap.members.values(), key=lambda m: m.full_name.lower()):
        if search.strip() and search.strip().lower() not in m.full_name.lower():
            continue
        if status_filter == "active" and not m.active:
            continue
        if status_filter == "inactive" and m.active:
            continue
        rows.append(
            {
                "name": m.full_name,
                "active": m.active,
                "packages": packages.member_status(m, snap.services, snap.appointments),
                "start_date": m.start_date.isoformat() if m.start_date else "",
                "id": m.id,
            }
        )
    if not rows:
        st.caption("No members.")
        return
    df = pd.DataFrame(rows)
    st.dataframe(df.drop(columns=["id"]), use_container_width=True, hide_index=True)

    st.divider()
    labels = {f"{r['name']} - {r['id'][:8]}": r["id"] for r in rows}
    chosen = st.selectbox("Member packages", list(labels.keys()))
    member = snap.members[labels[chosen]]
    usage = packages.member_package_summary(member, snap.services, snap.appointments)
    if usage:
        st.dataframe(
            pd.DataFrame(
                [
                    {
                        "package": u.service_name,
                        "purchases": u.purchases,
                        "used": u.used_sessions,
                        "total": u.total_sessions,
                        "remaining": u.remaining_sessions,
                        "status": u.status,
                    }
                    for u in usage
                ]
            ),
            use_container_width=True,
            hide_index=True,
        )
    else:
        st.caption("No purchased packages.")


def reports_page(rt: EngineRuntime):
    st.header("🧾 Reports")

    snap = rt.snapshot()
    frame = utils.appointments_frame(snap.appointments, snap.members, snap.trainers, snap.services)

    st.subheader("Appointment distribution")
    st.bar_chart(utils.status_distribution(snap.appointments), x="status", y="count")

    st.subheader("Service usage")
    st.dataframe(utils.service_usage(frame), use_container_width=True, hide_index=True)

    st.subheader("Trainer classes")
    st.dataframe(utils.trainer_classes(frame), use_container_width=True, hide_index=True)

    st.divider()
    st.download_button(
        "Download appointments.csv",
        data=utils.frame_to_csv_bytes(frame),
        file_name="appointments.csv",
        mime="text/csv",
    )
    st.download_button(
        "Download members.csv",
        data=utils.members_to_csv_bytes(snap.members.values()),
        file_name="members.csv",
        mime="text/csv",
    )


def settings_page(rt: EngineRuntime):
    st.header("⚙️ Settings")

    st.subheader("Member deactivation")
    sched = rt.scheduler
    st.write(
        f"Status: **{'running' if sched.is_running else 'stopped'}** | "
        f"Interval: **{sched.period_minutes} min** | "
        f"Deactivated so far: **{sched.total_deactivated}**"
    )
    if sched.last_result is not None:
        r = sched.last_result
        st.caption(f"Last scan: checked {r.checked}, deactivated {r.writes}, failed {len(r.failed)}"
                   + (" (aborted)" if r.aborted else ""))

    minutes = st.number_input("Interval (minutes)", min_value=1.0, value=float(sched.period_minutes))
    c1, c2, c3 = st.columns(3)
    with c1:
        if st.button("Start", disabled=sched.is_running):
            rt.start_scheduler(minutes)
            st.rerun()
    with c2:
        if st.button("Stop", disabled=not sched.is_running):
            rt.stop_scheduler()
            st.rerun()
    with c3:
        if st.button("Run scan now"):
            result = rt.run_scan_now()
            st.success(f"Scan done: {result.writes} member(s) deactivated.")

    st.divider()

    st.subheader("Live feed")
    st.caption(f"Applied events: {rt.reconciler.applied_events} | Dropped: {rt.reconciler.dropped_events}")
    if st.button("Resync now"):
        if rt.resync():
            st.success("Store reloaded.")
        else:
            st.error("Reload failed, will retry on next reconnect.")

    st.divider()

    st.subheader("Sample data")
    st.caption("Insert sample trainers, packages, members and today's appointments (adds new rows each run).")
    if st.button("Insert sample data"):
        utils.insert_sample_data(rt.remote)
        st.success("Sample data inserted.")
        st.rerun()


def main_app():
    rt = get_runtime()
    show_notifications(rt)

    st.sidebar.title("🏋️ Studio Console")
    st.sidebar.caption(f"Today: {date.today().isoformat()}")

    pages = ["Dashboard", "Appointments", "Members", "Reports", "Settings"]
    if "page" not in st.session_state:
        st.session_state.page = "Dashboard"
    st.session_state.page = st.sidebar.radio("Navigate", pages, index=pages.index(st.session_state.page))

    if st.session_state.page == "Dashboard":
        dashboard_page(rt)
    elif st.session_state.page == "Appointments":
        appointments_page(rt)
    elif st.session_state.page == "Members":
        members_page(rt)
    elif st.session_state.page == "Reports":
        reports_page(rt)
    elif st.session_state.page == "Settings":
        settings_page(rt)


if __name__ == "__main__":
    main_app()
