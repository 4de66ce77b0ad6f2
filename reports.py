"""
reports.py
pandas views and CSV exports for the console.
"""

from __future__ import annotations

from datetime import datetime

import pandas as pd

import db
import services
from models import ACADEMY_PAYMENTS, PAYMENTS, STATUSES

ACADEMY_COLUMNS = ["id", "name", "mobile", "email", "monthlyPrice", "status", "expiryDate"]
PAYMENT_COLUMNS = [
    "id", "invoiceNo", "paymentDate", "amount", "method", "status",
    "transactionId", "startDate", "endDate", "months", "processedBy",
]


def academies_frame(clock=datetime.now) -> pd.DataFrame:
    rows = services.list_academies_with_status(clock)
    if not rows:
        return pd.DataFrame(columns=ACADEMY_COLUMNS)
    df = pd.DataFrame(rows)
    return df.reindex(columns=ACADEMY_COLUMNS)


def status_counts(df: pd.DataFrame) -> dict[str, int]:
    counts = df["status"].value_counts() if not df.empty else pd.Series(dtype=int)
    return {s: int(counts.get(s, 0)) for s in STATUSES}


def payments_frame(collection: str = PAYMENTS) -> pd.DataFrame:
    docs = db.list_docs(collection, order_by="paymentDate")
    if not docs:
        return pd.DataFrame(columns=PAYMENT_COLUMNS)
    df = pd.DataFrame(docs).reindex(columns=PAYMENT_COLUMNS)
    df["amount"] = pd.to_numeric(df["amount"])
    df["months"] = df["months"].apply(lambda m: ", ".join(m) if isinstance(m, list) else "")
    return df


def payments_to_csv_bytes(collection: str = PAYMENTS) -> bytes:
    return payments_frame(collection).to_csv(index=False).encode("utf-8")


def revenue_summary_by_month() -> pd.DataFrame:
    frames = [f for f in (payments_frame(PAYMENTS), payments_frame(ACADEMY_PAYMENTS)) if not f.empty]
    if not frames:
        return pd.DataFrame(columns=["month", "revenue"])
    df = pd.concat(frames, ignore_index=True)
    df["month"] = df["paymentDate"].str.slice(0, 7)
    out = df.groupby("month", as_index=False)["amount"].sum().rename(columns={"amount": "revenue"})
    return out.sort_values("month", ascending=False).reset_index(drop=True)
