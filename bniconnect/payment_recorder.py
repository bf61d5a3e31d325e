# bniconnect/payment_recorder.py

import hashlib

from bniconnect.base_utils import as_array, new_id, now_iso
from bniconnect.entities import PAYMENTS_KEY


def _legacy_payment_id(p: dict) -> str:
    # records written without an id keep the same one across reads
    seed = f"{p.get('userId')}|{p.get('createdAt')}|{p.get('amount')}"
    return f"pay_{hashlib.sha1(seed.encode('utf-8')).hexdigest()[:12]}"


def normalize_payment(p: dict) -> dict:
    try:
        amount = float(p.get("amount") or 0)
    except (TypeError, ValueError):
        amount = 0.0
    return {
        "id": str(p.get("id") or _legacy_payment_id(p)),
        "userId": p.get("userId"),
        "fullName": p.get("fullName") or "",
        "compteBancaire": p.get("compteBancaire") or "",
        "telephone": p.get("telephone") or "",
        "amount": amount,
        "status": p.get("status") or "PENDING",
        "createdAt": p.get("createdAt") or "",
    }


async def read_payments(store) -> list[dict]:
    return [normalize_payment(p) for p in as_array(await store.read(PAYMENTS_KEY, [])) if isinstance(p, dict)]


async def write_payments(store, payments: list[dict]) -> None:
    await store.write(PAYMENTS_KEY, payments)


async def record_pending_payment(store, *, user: dict, amount: float) -> dict:
    """
    Put a PENDING payout at the head of the admin queue and return it.
    The record carries a snapshot of the user's payout details.
    """
    payments = await read_payments(store)
    entry = {
        "id": new_id("pay"),
        "userId": user["id"],
        "fullName": user.get("fullName") or "",
        "compteBancaire": user.get("compteBancaire") or "",
        "telephone": user.get("telephone") or "",
        "amount": amount,
        "status": "PENDING",
        "createdAt": now_iso(),
    }
    payments.insert(0, entry)
    await write_payments(store, payments)
    return entry
