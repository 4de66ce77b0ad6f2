"""
app.py
Streamlit admin console for academy and member subscriptions.
Run: streamlit run app.py
"""

from __future__ import annotations

import datetime as dt
import logging

import pandas as pd
import streamlit as st

import db
import reports
import services
import utils
from models import (
    ACADEMIES,
    ACADEMY_PAYMENTS,
    FEEDBACK_CATEGORIES,
    MEMBERS,
    PAYMENT_COMPLETED,
    PAYMENT_FAILED,
    PAYMENT_METHODS,
    PAYMENT_PENDING,
    PAYMENTS,
    PLAN_LABELS,
    PLAN_MONTHS,
    REGISTRATION_FEE_KEY,
    STATUSES,
)

st.set_page_config(page_title="Sports Complex Admin", layout="wide")


def init_once():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    db.init_db()


def staff_uid() -> str:
    return st.session_state.get("staff_uid") or "system"


# ---------- Pages ----------

def dashboard_page():
    st.header("📊 Dashboard")

    df = reports.academies_frame()
    counts = reports.status_counts(df)

    cols = st.columns(len(STATUSES))
    for col, status in zip(cols, STATUSES):
        col.metric(f"Academies {status.lower()}", counts[status])

    st.divider()

    st.subheader("Expiring soon (next 7 days)")
    soon = df[df["status"] == "Expiring Soon"] if not df.empty else df
    if not soon.empty:
        st.dataframe(soon, use_container_width=True, hide_index=True)
    else:
        st.caption("No academies expiring in the next 7 days.")


def academy_form(existing=None):
    if existing:
        st.subheader(f"✏️ Edit Academy ({existing['name']})")
    else:
        st.subheader("➕ Register Academy")

    col1, col2 = st.columns(2)
    with col1:
        name = st.text_input("Name", value=(existing["name"] if existing else ""))
        mobile = st.text_input("Mobile", value=(existing["mobile"] if existing else ""))
        email = st.text_input("Email (optional)", value=(existing.get("email", "") if existing else ""))
    with col2:
        address = st.text_input("Address", value=(existing["address"] if existing else ""))
        monthly_price = st.text_input("Monthly price", value=(str(existing["monthlyPrice"]) if existing else ""))

    errors = utils.validate_academy_inputs(name, mobile, address, monthly_price)
    if errors and (name or mobile or address or monthly_price):
        for e in errors:
            st.error(e)

    if st.button("Save", type="primary", disabled=bool(errors)):
        try:
            if existing:
                services.update_academy(existing["id"], staff_uid=staff_uid(), name=name, mobile=mobile,
                                        email=email, address=address, monthly_price=monthly_price)
                st.success("Academy updated.")
            else:
                services.register_academy(name, mobile, address, monthly_price, email=email,
                                          staff_uid=staff_uid())
                st.success("Academy registered. Now add a subscription with Extend.")
        except ValueError as exc:
            st.error(str(exc))
            return
        st.rerun()


def academy_extension_form(academy):
    st.subheader(f"🔁 Extend subscription: {academy['name']}")

    status, latest = services.academy_status(academy["id"])
    if latest:
        st.write(f"Current: **{latest.start_date} → {latest.end_date}** | Status: **{status}**")

    col1, col2, col3 = st.columns(3)
    with col1:
        default_start = utils.parse_iso(services.suggested_start_date(ACADEMIES, academy["id"]))
        start_date = st.date_input("Start date", value=default_start).isoformat()
        months = st.number_input("Months", min_value=1, max_value=12, value=1, step=1)
    with col2:
        use_custom = st.toggle("Custom amount", value=False)
        custom_price = st.text_input("Amount", value="", disabled=not use_custom)
    with col3:
        method = st.selectbox("Payment method", PAYMENT_METHODS, index=1)
        utr = st.text_input("UTR number", value="", disabled=(method != "Online"))

    end_date = utils.calc_end_date(start_date, duration=int(months))
    override = custom_price if use_custom else None
    errors = utils.validate_extension_inputs(start_date, int(months), override, method, utr)
    if not errors:
        amount = utils.round_currency(utils.calc_amount(academy["monthlyPrice"], int(months), override))
        st.info(f"New expiry: **{end_date}** | Amount: **{amount}** | "
                f"Months: {', '.join(utils.month_labels(start_date, int(months)))}")

    if st.button("Extend", type="primary"):
        if errors:
            for e in errors:
                st.error(e)
            return
        try:
            result = services.extend_academy_subscription(
                academy["id"], start_date, int(months), custom_price=override, method=method,
                transaction_id=utr, staff_uid=staff_uid(),
            )
        except ValueError as exc:
            st.error(str(exc))
            return
        st.success(f"Payment {result.invoice_no} recorded; subscription runs until {result.end_date}.")


def academies_page():
    st.header("🏫 Academies")

    df = reports.academies_frame()
    with st.sidebar:
        st.subheader("Filters")
        status_filter = st.selectbox("Status", ["All"] + STATUSES)
    if status_filter != "All" and not df.empty:
        df = df[df["status"] == status_filter]
    st.dataframe(df, use_container_width=True, hide_index=True)

    st.divider()

    ids = df["id"].tolist() if not df.empty else []
    names = dict(zip(ids, df["name"].tolist())) if ids else {}
    selected = st.selectbox("Academy", options=["(none)"] + ids, format_func=lambda i: names.get(i, i))

    if selected != "(none)":
        academy = db.get_doc(ACADEMIES, selected)
        tab_extend, tab_edit, tab_payments = st.tabs(["Extend", "Edit", "Payments"])
        with tab_extend:
            academy_extension_form(academy)
        with tab_edit:
            academy_form(existing=academy)
            delete_confirm = st.checkbox("Confirm delete", value=False, key="del_academy")
            if st.button("Delete", type="secondary", disabled=not delete_confirm):
                services.delete_academy(selected)
                st.success("Academy deleted.")
                st.rerun()
        with tab_payments:
            pays = services.payments_for(ACADEMIES, selected)
            if pays:
                st.dataframe(pd.DataFrame([p.__dict__ for p in pays]), use_container_width=True, hide_index=True)
            else:
                st.caption("No payments for this academy yet.")
    else:
        academy_form(existing=None)


def members_page():
    st.header("👥 Members")

    members = services.list_members()
    facilities = services.list_facilities()
    if not members or not facilities:
        st.info("Add a facility and a member first (Settings → Insert sample data).")
        return

    member_names = {m["id"]: f"{m['name']} ({m['regNumber']})" for m in members}
    member_id = st.selectbox("Member", list(member_names), format_func=member_names.get)

    overview = services.member_subscriptions(member_id)
    st.write(f"Registration expiry: **{overview['registrationExpiry']}**")
    if overview["subscriptions"]:
        st.dataframe(pd.DataFrame(overview["subscriptions"]), use_container_width=True, hide_index=True)

    st.divider()
    st.subheader("Extend subscription")

    facility_names = {f["id"]: f["name"] for f in facilities}
    col1, col2, col3 = st.columns(3)
    with col1:
        facility_id = st.selectbox("Facility", list(facility_names), format_func=facility_names.get)
        fees = services.facility_fees(facility_id)
        plans = [p for p in fees if p != REGISTRATION_FEE_KEY]
        if not plans:
            st.warning("No plans configured for this facility.")
            return
        plan_type = st.selectbox("Plan", plans, format_func=lambda p: PLAN_LABELS.get(p, p))
    with col2:
        default_start = utils.parse_iso(services.suggested_start_date(MEMBERS, member_id, facility_id))
        start_date = st.date_input("Start date", value=default_start).isoformat()
        include_reg = st.checkbox("Include registration fee", value=False, disabled=(plan_type == "withoutReg"))
    with col3:
        method = st.selectbox("Payment method", PAYMENT_METHODS, index=1, key="member_method")
        utr = st.text_input("UTR number", value="", disabled=(method != "Online"), key="member_utr")

    end_date = utils.calc_end_date(start_date, plan_type, fees[plan_type].get("duration"))
    amount = utils.round_currency(utils.plan_fee(fees, plan_type, include_reg))
    st.info(f"New expiry: **{end_date}** | Amount: **{amount}**")

    if st.button("Extend", type="primary", key="member_extend"):
        if method == "Online" and not utr.strip():
            st.error("Please enter the UTR number.")
            return
        try:
            result = services.extend_member_subscription(
                member_id, facility_id, plan_type, start_date, include_registration=include_reg,
                method=method, transaction_id=utr, staff_uid=staff_uid(),
            )
        except ValueError as exc:
            st.error(str(exc))
            return
        st.success(f"Payment {result.invoice_no} recorded; subscription runs until {result.end_date}.")
        st.rerun()


def facilities_page():
    st.header("🏊 Facilities")

    name = st.text_input("New facility name")
    if st.button("Add facility") and name.strip():
        services.create_facility(name)
        st.rerun()

    facilities = services.list_facilities()
    if not facilities:
        st.caption("No facilities yet.")
        return

    facility_names = {f["id"]: f["name"] for f in facilities}
    facility_id = st.selectbox("Facility", list(facility_names), format_func=facility_names.get)
    fees = services.facility_fees(facility_id)
    if fees:
        st.dataframe(
            pd.DataFrame([{"plan": k, "price": v["price"], "duration": v.get("duration")} for k, v in fees.items()]),
            use_container_width=True, hide_index=True,
        )

    st.subheader("Set fee")
    c1, c2, c3 = st.columns(3)
    with c1:
        plan_type = st.selectbox("Plan", list(PLAN_MONTHS) + [REGISTRATION_FEE_KEY])
    with c2:
        price = st.text_input("Price", value="")
    with c3:
        duration = st.text_input("Duration in months (optional)", value="")

    if st.button("Save fee", type="primary"):
        try:
            services.set_facility_fee(facility_id, plan_type, price, duration or None)
        except ValueError as exc:
            st.error(str(exc))
            return
        st.success("Fee saved.")
        st.rerun()


def payment_status_actions(df, collection):
    pending = df[df["status"] == PAYMENT_PENDING]
    if pending.empty:
        return
    st.subheader("Verify pending payments")
    labels = dict(zip(pending["id"], pending["invoiceNo"] + " | " + pending["transactionId"].fillna("")))
    payment_id = st.selectbox("Payment", list(labels), format_func=labels.get, key=f"verify_{collection}")
    c1, c2 = st.columns(2)
    if c1.button("Mark completed", type="primary", key=f"complete_{collection}"):
        services.set_payment_status(collection, payment_id, PAYMENT_COMPLETED, staff_uid=staff_uid())
        st.rerun()
    if c2.button("Mark failed", key=f"fail_{collection}"):
        services.set_payment_status(collection, payment_id, PAYMENT_FAILED, staff_uid=staff_uid())
        st.rerun()


def manual_payment_form():
    st.subheader("➕ Manual payment")
    members = services.list_members()
    facilities = services.list_facilities()
    if not members or not facilities:
        st.caption("Add a facility and a member first.")
        return

    member_names = {m["id"]: f"{m['name']} ({m['regNumber']})" for m in members}
    facility_names = {f["id"]: f["name"] for f in facilities}
    c1, c2 = st.columns(2)
    with c1:
        member_id = st.selectbox("Member", list(member_names), format_func=member_names.get, key="manual_member")
        facility_id = st.selectbox("Facility", list(facility_names), format_func=facility_names.get,
                                   key="manual_facility")
        plan_type = st.selectbox("Plan", list(PLAN_MONTHS), format_func=lambda p: PLAN_LABELS.get(p, p),
                                 key="manual_plan")
        is_registration = st.checkbox("Include registration fee", value=False, key="manual_reg")
    with c2:
        amount = st.text_input("Amount", value="", key="manual_amount")
        months = st.multiselect(
            "Months",
            [utils.add_months(dt.date.today(), i).strftime("%B %Y") for i in range(-3, 12)],
            key="manual_months",
        )
        transaction_id = st.text_input("Transaction ID (optional)", value="", key="manual_txn")

    if st.button("Record payment", type="primary", key="manual_save"):
        try:
            services.record_manual_payment(member_id, facility_id, amount, months, plan_type=plan_type,
                                           is_registration=is_registration, transaction_id=transaction_id,
                                           staff_uid=staff_uid())
        except ValueError as exc:
            st.error(str(exc))
            return
        st.success("Manual payment recorded.")
        st.rerun()


def payments_page():
    st.header("💳 Payments")

    source = st.radio("Payments of", ["Members", "Academies"], horizontal=True)
    collection = PAYMENTS if source == "Members" else ACADEMY_PAYMENTS
    df = reports.payments_frame(collection)
    if df.empty:
        st.caption("No payments yet.")
    else:
        st.dataframe(df, use_container_width=True, hide_index=True)
        st.download_button(
            f"Download {collection}.csv",
            data=reports.payments_to_csv_bytes(collection),
            file_name=f"{collection}.csv",
            mime="text/csv",
        )
        payment_status_actions(df, collection)

    if collection == PAYMENTS:
        st.divider()
        manual_payment_form()


def guests_page():
    st.header("🎟️ Guests")

    guests = services.list_guests()
    if guests:
        st.dataframe(pd.DataFrame(guests).reindex(columns=["name", "mobile", "lastVisit"]),
                     use_container_width=True, hide_index=True)

    mode = st.radio("Guest", ["New guest", "Existing guest"], horizontal=True)
    if mode == "New guest":
        c1, c2 = st.columns(2)
        name = c1.text_input("Name", key="guest_name")
        mobile = c2.text_input("Mobile", key="guest_mobile")
        errors = utils.validate_guest_inputs(name, mobile)
        if errors and (name or mobile):
            for e in errors:
                st.error(e)
        if st.button("Register guest", disabled=bool(errors)):
            try:
                services.register_guest(name, mobile, staff_uid=staff_uid())
            except ValueError as exc:
                st.error(str(exc))
                return
            st.success("Guest registered. Select them under Existing guest to book.")
            st.rerun()
        return

    if not guests:
        st.caption("No guests yet.")
        return
    facilities = services.list_facilities()
    if not facilities:
        st.info("Add a facility first.")
        return

    guest_names = {g["id"]: f"{g['name']} ({g['mobile']})" for g in guests}
    facility_names = {f["id"]: f["name"] for f in facilities}
    c1, c2 = st.columns(2)
    with c1:
        guest_id = st.selectbox("Guest", list(guest_names), format_func=guest_names.get)
        facility_id = st.selectbox("Facility", list(facility_names), format_func=facility_names.get,
                                   key="guest_facility")
        fees = services.facility_fees(facility_id)
        plans = [p for p in fees if p != REGISTRATION_FEE_KEY]
        if not plans:
            st.warning("No plans configured for this facility.")
            return
        plan_type = st.selectbox("Plan", plans, format_func=lambda p: PLAN_LABELS.get(p, p), key="guest_plan")
    with c2:
        start_date = st.date_input("Start date", key="guest_start").isoformat()
        utr = st.text_input("UTR number", value="", key="guest_utr")

    end_date = utils.calc_end_date(start_date, plan_type, fees[plan_type].get("duration"))
    st.info(f"Valid until: **{end_date}** | Amount: **{utils.round_currency(utils.plan_fee(fees, plan_type))}**")

    if st.button("Book", type="primary", key="guest_book"):
        if not utr.strip():
            st.error("Please enter the UTR number.")
            return
        try:
            result = services.book_guest(guest_id, facility_id, plan_type, start_date,
                                         transaction_id=utr, staff_uid=staff_uid())
        except ValueError as exc:
            st.error(str(exc))
            return
        st.success(f"Guest booking {result.invoice_no} recorded; valid until {result.end_date}.")


def feedback_page():
    st.header("💬 Feedback")

    title = st.text_input("Title")
    category = st.selectbox("Category", FEEDBACK_CATEGORIES, format_func=str.capitalize)
    description = st.text_area("Description")

    if st.button("Submit", type="primary"):
        errors = utils.validate_feedback_inputs(title, description, category)
        if errors:
            for e in errors:
                st.error(e)
            return
        services.submit_feedback(title, description, category, staff_uid=staff_uid())
        st.success("Thanks, your feedback was submitted.")

    items = services.list_feedback()
    if items:
        st.subheader("Submitted")
        st.dataframe(pd.DataFrame(items).reindex(columns=["title", "category", "status", "createdAt"]),
                     use_container_width=True, hide_index=True)


def reports_page():
    st.header("🧾 Reports")

    st.subheader("Revenue summary by month")
    st.dataframe(reports.revenue_summary_by_month(), use_container_width=True, hide_index=True)


def settings_page():
    st.header("⚙️ Settings")

    st.subheader("Sample data")
    st.caption("Insert a facility, two academies and a member for testing (adds new rows each run).")
    if st.button("Insert sample data"):
        services.insert_sample_data()
        st.success("Sample data inserted.")
        st.rerun()

    st.caption(f"Document store: {db.DB_FILE}")


def main_app():
    st.sidebar.title("🏟️ Sports Complex")
    st.session_state.staff_uid = st.sidebar.text_input("Staff ID", value=st.session_state.get("staff_uid", ""))

    pages = [
        "Dashboard", "Academies", "Members", "Guests", "Facilities", "Payments", "Reports", "Feedback", "Settings",
    ]
    if "page" not in st.session_state:
        st.session_state.page = "Dashboard"
    st.session_state.page = st.sidebar.radio("Navigate", pages, index=pages.index(st.session_state.page))

    if st.session_state.page == "Dashboard":
        dashboard_page()
    elif st.session_state.page == "Academies":
        academies_page()
    elif st.session_state.page == "Members":
        members_page()
    elif st.session_state.page == "Guests":
        guests_page()
    elif st.session_state.page == "Facilities":
        facilities_page()
    elif st.session_state.page == "Payments":
        payments_page()
    elif st.session_state.page == "Reports":
        reports_page()
    elif st.session_state.page == "Feedback":
        feedback_page()
    elif st.session_state.page == "Settings":
        settings_page()


# --------- App entry ---------

def run():
    init_once()
    main_app()


if __name__ == "__main__":
    run()
