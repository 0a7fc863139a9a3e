import altair as alt
import pandas as pd
import requests
import streamlit as st

st.set_page_config(page_title="EmotionSense", page_icon="??", layout="centered")

API_BASE = st.text_input("API base URL", value="http://127.0.0.1:8000")

LEVEL_COLORS = {"safe": "#2e7d32", "warning": "#f9a825", "critical": "#c62828"}
PERIOD_LABELS = {"All": None, "Today": "daily", "Last 7 days": "weekly", "Last 30 days": "monthly"}

if "token" not in st.session_state:
    st.session_state.token = None
if "me" not in st.session_state:
    st.session_state.me = None
if "dev_mode" not in st.session_state:
    st.session_state.dev_mode = False
if "last_entry" not in st.session_state:
    st.session_state.last_entry = None


def api_headers() -> dict:
    if st.session_state.token:
        return {"Authorization": f"Bearer {st.session_state.token}"}
    return {}


def api_url(path: str) -> str:
    return f"{API_BASE}{path}"


def safe_json(resp: requests.Response):
    content_type = resp.headers.get("content-type", "")
    if "application/json" not in content_type:
        return None
    try:
        return resp.json()
    except ValueError:
        return None


def show_response_error(resp: requests.Response, path: str, fallback_message: str) -> None:
    url = api_url(path)
    payload = safe_json(resp)
    if payload and isinstance(payload, dict):
        detail = payload.get("detail", fallback_message)
        st.error(f"{fallback_message} ({resp.status_code}) | {url} | {detail}")
        return
    text = (resp.text or "").strip()
    snippet = text[:500] if text else "No response body."
    st.error(f"{fallback_message} ({resp.status_code}) | {url} | {snippet}")


def api_get(path: str, params=None):
    try:
        return requests.get(api_url(path), headers=api_headers(), params=params, timeout=10)
    except requests.RequestException as exc:
        st.error(f"Request failed: {exc}")
        return None


def api_post(path: str, json=None, data=None):
    try:
        return requests.post(
            api_url(path),
            headers=api_headers(),
            json=json,
            data=data,
            timeout=10,
        )
    except requests.RequestException as exc:
        st.error(f"Request failed: {exc}")
        return None


def api_delete(path: str):
    try:
        return requests.delete(api_url(path), headers=api_headers(), timeout=10)
    except requests.RequestException as exc:
        st.error(f"Request failed: {exc}")
        return None


def load_me() -> None:
    resp = api_get("/auth/me")
    if resp is not None and resp.ok:
        st.session_state.me = safe_json(resp)
    else:
        st.session_state.me = None


def show_level(level: str, label: str = "Alert level") -> None:
    color = LEVEL_COLORS.get(level, "#607d8b")
    st.markdown(f"{label}: <span style='color:{color};font-weight:bold'>{level.upper()}</span>", unsafe_allow_html=True)


def emotion_chart(entries: list) -> None:
    if not entries:
        return
    df = pd.DataFrame(entries)
    counts = df.groupby("label").size().reset_index(name="count")
    chart = alt.Chart(counts).mark_bar().encode(
        x=alt.X("label:N", title="Emotion"),
        y=alt.Y("count:Q", title="Entries"),
        tooltip=["label:N", "count:Q"],
    )
    st.altair_chart(chart, use_container_width=True)


def show_entries(entries: list) -> None:
    if not entries:
        st.info("No diary entries yet.")
        return
    for entry in entries:
        st.markdown(f"**{entry['created_at']}** | {entry['label']} ({entry['confidence']:.1f}%)")
        st.write(entry["content"])
        st.divider()


def show_conversation(patient_id: int) -> None:
    messages_resp = api_get(f"/messages/{patient_id}")
    if messages_resp is None:
        return
    if not messages_resp.ok:
        show_response_error(messages_resp, f"/messages/{patient_id}", "Unable to load messages.")
        return
    for item in safe_json(messages_resp) or []:
        st.write(f"[{item['sender_role']}] {item['created_at']}: {item['message']}")
    api_post(f"/messages/{patient_id}/read")
    with st.form(f"message_form_{patient_id}"):
        message = st.text_input("Message", key=f"message_{patient_id}")
        if st.form_submit_button("Send"):
            if not message.strip():
                st.warning("Write a message before sending.")
            else:
                resp = api_post(f"/messages/{patient_id}", json={"message": message})
                if resp is not None and resp.ok:
                    st.success("Message sent.")
                elif resp is not None:
                    show_response_error(resp, f"/messages/{patient_id}", "Unable to send message.")


st.title("EmotionSense")
st.caption("Not a diagnosis. If you feel unsafe contact local emergency services.")

login_tab, diary_tab, clinician_tab, messages_tab = st.tabs(
    ["Account", "Diary", "Psychologist", "Messages"]
)

st.subheader("Backend connection check")
health_resp = api_get("/health")
if health_resp is None:
    st.error("Backend check failed. Start backend with: uvicorn emotionsense.backend.app.main:app --reload --port 8000")
elif health_resp.ok:
    payload = safe_json(health_resp) or {}
    st.session_state.dev_mode = bool(payload.get("dev_mode"))
    message = f"Backend healthy ({health_resp.status_code}) | {api_url('/health')}"
    if st.session_state.dev_mode:
        message += " | Dev mode enabled"
    st.success(message)
else:
    snippet = (health_resp.text or "").strip()
    st.error(
        f"Backend unhealthy ({health_resp.status_code}) | {api_url('/health')} | "
        f"{snippet[:500] if snippet else 'No response body.'}"
    )

with login_tab:
    st.subheader("Sign up")
    with st.form("register_form"):
        reg_name = st.text_input("Name", key="reg_name")
        reg_email = st.text_input("Email", key="reg_email")
        reg_password = st.text_input("Password", type="password", key="reg_password")
        reg_role = st.selectbox("Role", ["patient", "psychologist"], key="reg_role")
        if st.form_submit_button("Create account"):
            if not reg_email or not reg_password or not reg_name:
                st.warning("Enter a name, email and password.")
            else:
                resp = api_post(
                    "/auth/register",
                    json={"email": reg_email, "name": reg_name, "password": reg_password, "role": reg_role},
                )
                if resp is not None and resp.ok:
                    payload = safe_json(resp) or {}
                    st.session_state.token = payload.get("access_token")
                    load_me()
                    st.success("Account created. You are signed in.")
                elif resp is not None:
                    show_response_error(resp, "/auth/register", "Registration failed.")

    st.subheader("Login")
    with st.form("login_form"):
        login_email = st.text_input("Email", key="login_email")
        login_password = st.text_input("Password", type="password", key="login_password")
        if st.form_submit_button("Sign in"):
            if not login_email or not login_password:
                st.warning("Enter your email and password.")
            else:
                resp = api_post(
                    "/auth/login",
                    data={"username": login_email, "password": login_password},
                )
                if resp is not None and resp.ok:
                    payload = safe_json(resp) or {}
                    st.session_state.token = payload.get("access_token")
                    load_me()
                    st.success("Signed in.")
                elif resp is not None:
                    show_response_error(resp, "/auth/login", "Login failed.")

    if st.session_state.me:
        me = st.session_state.me
        st.info(f"Signed in as {me['name']} ({me['role']}).")
        if st.button("Sign out"):
            st.session_state.token = None
            st.session_state.me = None

    if st.session_state.dev_mode:
        st.subheader("Developer Tools")
        if st.button("Seed demo data"):
            resp = api_post("/dev/seed_demo")
            if resp is not None and resp.ok:
                payload = safe_json(resp) or {}
                if payload.get("status") == "exists":
                    st.info("Demo data already present.")
                else:
                    created = payload.get("created", {})
                    st.success(
                        "Demo data created: "
                        f"{created.get('users', 0)} users, "
                        f"{created.get('diary_entries', 0)} diary entries. "
                        "Sign in as patient@demo.com or psychologist@demo.com (password demo123)."
                    )
            elif resp is not None:
                show_response_error(resp, "/dev/seed_demo", "Unable to seed demo data.")

me = st.session_state.me or {}

with diary_tab:
    if me.get("role") != "patient":
        st.warning("Sign in as a patient on the Account tab to write a diary.")
    else:
        alert_resp = api_get("/alerts/self")
        if alert_resp is not None and alert_resp.ok:
            alert = safe_json(alert_resp)
            if alert:
                if alert.get("level") == "critical":
                    st.error(alert["message"])
                else:
                    st.warning(alert["message"])

        feedback_resp = api_get("/feedback")
        if feedback_resp is not None and feedback_resp.ok:
            feedback_items = safe_json(feedback_resp) or []
            unread = [item for item in feedback_items if not item["is_read"]]
            if unread:
                st.subheader(f"Feedback from your psychologist ({len(unread)} new)")
                for item in unread:
                    st.info(item["message"])
                    if st.button("Mark as read", key=f"feedback_read_{item['id']}"):
                        api_post(f"/feedback/{item['id']}/read")

        st.subheader("Write a diary entry")
        diary_text = st.text_area("How do you feel today?", height=140)
        if st.button("Save diary entry"):
            if not diary_text.strip():
                st.warning("Write something before saving.")
            else:
                resp = api_post("/diary", json={"content": diary_text})
                if resp is not None and resp.ok:
                    st.session_state.last_entry = (safe_json(resp) or {}).get("entry")
                    st.success("Diary entry saved.")
                elif resp is not None:
                    show_response_error(resp, "/diary", "Unable to save diary entry.")

        last_entry = st.session_state.last_entry
        if last_entry:
            st.metric("Detected emotion", last_entry["label"], f"{last_entry['confidence']:.1f}% confidence")
            prob_df = pd.DataFrame(last_entry["probabilities"])
            prob_chart = alt.Chart(prob_df).mark_bar().encode(
                x=alt.X("probability:Q", title="Probability (%)"),
                y=alt.Y("emotion:N", sort="-x", title="Emotion"),
            )
            st.altair_chart(prob_chart, use_container_width=True)

        st.subheader("History")
        period_label = st.selectbox("Period", list(PERIOD_LABELS.keys()), key="own_period")
        period = PERIOD_LABELS[period_label]
        diary_resp = api_get("/diary", params={"period": period} if period else None)
        if diary_resp is not None and diary_resp.ok:
            entries = safe_json(diary_resp) or []
            emotion_chart(entries)
            show_entries(entries)
        elif diary_resp is not None:
            show_response_error(diary_resp, "/diary", "Unable to load diary.")

with clinician_tab:
    if me.get("role") != "psychologist":
        st.warning("Sign in as a psychologist on the Account tab to monitor patients.")
    else:
        at_risk_resp = api_get("/patients/at-risk")
        if at_risk_resp is not None and at_risk_resp.ok:
            at_risk = safe_json(at_risk_resp) or []
            if at_risk:
                st.error(f"{len(at_risk)} patient(s) need attention.")
                for item in at_risk:
                    st.write(f"- {item['patient_name']}: {item['alert_level']}")
            else:
                st.success("No patients currently flagged.")

        patients_resp = api_get("/patients")
        if patients_resp is None:
            st.stop()
        if not patients_resp.ok:
            show_response_error(patients_resp, "/patients", "Unable to load patients.")
            st.stop()
        patients = safe_json(patients_resp) or []
        if not patients:
            st.info("No patients registered yet.")
            st.stop()

        st.dataframe(pd.DataFrame(patients)[[
            "patient_name",
            "alert_level",
            "total_entries",
            "negative_percentage",
            "consecutive_negative_days",
            "last_entry_at",
        ]])

        names = {f"{item['patient_name']} ({item['patient_email']})": item for item in patients}
        selected = names[st.selectbox("Patient", list(names.keys()))]
        patient_id = int(selected["patient_id"])

        st.subheader(selected["patient_name"])
        show_level(selected["alert_level"])
        col1, col2, col3 = st.columns(3)
        col1.metric("Entries", selected["total_entries"])
        col2.metric("Negative", f"{selected['negative_percentage']}%")
        col3.metric("Negative streak", f"{selected['consecutive_negative_days']} days")

        if selected["alert_level"] != "safe":
            if st.button("Mark as safe"):
                resp = api_post(f"/patients/{patient_id}/mark-safe")
                if resp is not None and resp.ok:
                    st.success("Patient marked safe until a new negative entry arrives.")
                elif resp is not None:
                    show_response_error(resp, f"/patients/{patient_id}/mark-safe", "Unable to mark safe.")
        if st.button("Clear override"):
            resp = api_delete(f"/patients/{patient_id}/override")
            if resp is not None and resp.ok:
                st.info("Override cleared." if (safe_json(resp) or {}).get("removed") else "No override to clear.")
            elif resp is not None:
                show_response_error(resp, f"/patients/{patient_id}/override", "Unable to clear override.")

        period_label = st.selectbox("Period", list(PERIOD_LABELS.keys()), key="patient_period")
        period = PERIOD_LABELS[period_label]
        diary_resp = api_get(f"/patients/{patient_id}/diary", params={"period": period} if period else None)
        if diary_resp is not None and diary_resp.ok:
            entries = safe_json(diary_resp) or []
            emotion_chart(entries)
            show_entries(entries)
        elif diary_resp is not None:
            show_response_error(diary_resp, f"/patients/{patient_id}/diary", "Unable to load diary.")

        st.subheader("Notes")
        notes_resp = api_get(f"/patients/{patient_id}/notes")
        if notes_resp is not None and notes_resp.ok:
            for note in safe_json(notes_resp) or []:
                st.write(f"{note['created_at']}: {note['note']}")
        with st.form("note_form"):
            note_text = st.text_area("New note", key="note_text")
            if st.form_submit_button("Save note"):
                resp = api_post(f"/patients/{patient_id}/notes", json={"note": note_text})
                if resp is not None and resp.ok:
                    st.success("Note saved.")
                elif resp is not None:
                    show_response_error(resp, f"/patients/{patient_id}/notes", "Unable to save note.")

        st.subheader("Send feedback")
        with st.form("feedback_form"):
            feedback_text = st.text_area("Feedback for the patient", key="feedback_text")
            if st.form_submit_button("Send feedback"):
                resp = api_post(f"/patients/{patient_id}/feedback", json={"message": feedback_text})
                if resp is not None and resp.ok:
                    st.success("Feedback sent.")
                elif resp is not None:
                    show_response_error(resp, f"/patients/{patient_id}/feedback", "Unable to send feedback.")

with messages_tab:
    if not me:
        st.warning("Sign in on the Account tab to continue.")
    else:
        unread_resp = api_get("/messages/unread_count")
        if unread_resp is not None and unread_resp.ok:
            st.caption(f"Unread messages: {(safe_json(unread_resp) or {}).get('unread', 0)}")
        if me.get("role") == "patient":
            show_conversation(int(me["id"]))
        else:
            patients_resp = api_get("/patients")
            patients = (safe_json(patients_resp) or []) if patients_resp is not None and patients_resp.ok else []
            if not patients:
                st.info("No patients to message yet.")
            else:
                names = {item["patient_name"]: int(item["patient_id"]) for item in patients}
                show_conversation(names[st.selectbox("Conversation", list(names.keys()), key="conversation")])

st.caption("Not a diagnosis. If you feel unsafe contact local emergency services.")
