# bniconnect/wallet_ledger.py

import asyncio
import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from bniconnect.base_utils import BaseUtils, day_key, now_iso, week_key
from bniconnect.entities import CAGNOTTE_KEY, RETRAIT_PENDING, idle_retrait
from bniconnect.errors import NotFoundError, ValidationError
from bniconnect.payment_recorder import read_payments, record_pending_payment, write_payments

logger = logging.getLogger("bni_backend")

DAILY_LIMIT = "DAILY_LIMIT"
WEEKLY_LIMIT = "WEEKLY_LIMIT"

CENTS = Decimal("0.01")


def to_cents(value) -> Decimal:
    try:
        return Decimal(str(value or 0)).quantize(CENTS, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return Decimal("0.00")


def _money(*values) -> float:
    """Sum amounts in Decimal cents; the float is only for the JSON documents."""
    return float(sum((to_cents(v) for v in values), Decimal("0.00")))


def _entry(cagnotte: dict, user_id: str) -> dict:
    entry = cagnotte.get(user_id)
    if not isinstance(entry, dict):
        entry = {}
    entry["pending"] = _money(entry.get("pending"))
    entry["randomByDay"] = entry.get("randomByDay") if isinstance(entry.get("randomByDay"), dict) else {}
    entry["randomByWeek"] = entry.get("randomByWeek") if isinstance(entry.get("randomByWeek"), dict) else {}
    cagnotte[user_id] = entry
    return entry


class WalletLedger(BaseUtils):
    """
    cagnotte.json: {userId: {pending, randomByDay: {YYYY-MM-DD: n}, randomByWeek: {YYYY-Www: n}}}
    argentadmin.json: admin payout queue.

    Every read-modify-write of the wallet document runs under `self.lock`.
    Lock order when nested: responses mutex -> wallet lock -> users lock.
    """

    def __init__(self, store, users) -> None:
        self.store = store
        self.users = users
        self.lock = asyncio.Lock()

    async def _read(self) -> dict:
        data = await self.store.read(CAGNOTTE_KEY, {})
        return data if isinstance(data, dict) else {}

    async def _write(self, cagnotte: dict) -> None:
        await self.store.write(CAGNOTTE_KEY, cagnotte)

    # -----------------------
    # Quota
    # -----------------------

    def _quota_from_entry(self, entry: dict, settings: dict, now) -> dict:
        daily_limit = int(settings["randomQuestionsPerDay"])
        weekly_limit = int(settings["randomQuestionsPerWeek"])
        daily_count = int(entry["randomByDay"].get(day_key(now), 0) or 0)
        weekly_count = int(entry["randomByWeek"].get(week_key(now), 0) or 0)

        exceeded = None
        if daily_count >= daily_limit:
            exceeded = "daily"
        elif weekly_count >= weekly_limit:
            exceeded = "weekly"

        return {
            "dailyCount": daily_count,
            "weeklyCount": weekly_count,
            "dailyLimit": daily_limit,
            "weeklyLimit": weekly_limit,
            "dailyRemaining": max(0, daily_limit - daily_count),
            "weeklyRemaining": max(0, weekly_limit - weekly_count),
            "exceeded": exceeded,
        }

    async def quota(self, user_id: str, settings: dict, now=None) -> dict:
        now = now or self._now()
        cagnotte = await self._read()
        return self._quota_from_entry(_entry(cagnotte, str(user_id)), settings, now)

    async def daily_count(self, user_id: str, date_key: str) -> int:
        entry = _entry(await self._read(), str(user_id))
        return int(entry["randomByDay"].get(date_key, 0) or 0)

    async def weekly_count(self, user_id: str, wk_key: str) -> int:
        entry = _entry(await self._read(), str(user_id))
        return int(entry["randomByWeek"].get(wk_key, 0) or 0)

    async def _consume(self, user_id: str, settings: dict, credit: bool) -> dict:
        user_id = str(user_id)
        now = self._now()
        async with self.lock:
            cagnotte = await self._read()
            entry = _entry(cagnotte, user_id)
            q = self._quota_from_entry(entry, settings, now)

            if q["exceeded"] == "daily":
                return {"ok": False, "reason": DAILY_LIMIT, "pending": entry["pending"], "count": q["dailyCount"]}
            if q["exceeded"] == "weekly":
                return {"ok": False, "reason": WEEKLY_LIMIT, "pending": entry["pending"], "count": q["weeklyCount"]}

            dk, wk = day_key(now), week_key(now)
            entry["randomByDay"][dk] = q["dailyCount"] + 1
            entry["randomByWeek"][wk] = q["weeklyCount"] + 1
            if credit:
                entry["pending"] = _money(entry["pending"], settings["earningsPerRandomQuestion"])

            await self._write(cagnotte)

        return {
            "ok": True,
            "pending": entry["pending"],
            "count": entry["randomByDay"][dk],
            "dailyRemaining": max(0, q["dailyLimit"] - entry["randomByDay"][dk]),
            "weeklyRemaining": max(0, q["weeklyLimit"] - entry["randomByWeek"][wk]),
        }

    async def credit_random(self, user_id: str, settings: dict) -> dict:
        """Accepted random answer: one quota unit plus the per-question earning."""
        return await self._consume(user_id, settings, credit=True)

    async def consume_quota_only(self, user_id: str, settings: dict) -> dict:
        """Explicit skip: one quota unit, no earning."""
        return await self._consume(user_id, settings, credit=False)

    async def credit_questionnaire(self, user_id: str, amount: float) -> float:
        # Only the completion validator calls this, inside the responses mutex.
        amount = _money(amount)
        async with self.lock:
            cagnotte = await self._read()
            entry = _entry(cagnotte, str(user_id))
            if amount > 0:
                entry["pending"] = _money(entry["pending"], amount)
                await self._write(cagnotte)
            return entry["pending"]

    async def summary(self, user_id: str, settings: dict) -> dict:
        user = await self.users.get_user(user_id)
        cagnotte = await self._read()
        entry = _entry(cagnotte, str(user_id))
        q = self._quota_from_entry(entry, settings, self._now())
        return {
            "ok": True,
            "pending": entry["pending"],
            "gagneSurBNI": user["gagneSurBNI"],
            "retrait": user["retrait"],
            "dailyCount": q["dailyCount"],
            "weeklyCount": q["weeklyCount"],
        }

    # -----------------------
    # Withdrawals
    # -----------------------

    async def request_withdrawal(self, user_id: str, settings: dict) -> dict:
        user_id = str(user_id)
        async with self.lock:
            async with self.users.lock:
                users = await self.users.read_users()
                user = await self.users.get_user(user_id, users)

                cagnotte = await self._read()
                entry = _entry(cagnotte, user_id)
                pending = entry["pending"]
                minimum = float(settings["minimumWithdrawalAmount"])

                if (user.get("retrait") or {}).get("status") == RETRAIT_PENDING:
                    raise ValidationError("Déjà en attente")
                if to_cents(pending) < to_cents(minimum):
                    raise ValidationError(f"Seuil minimum: {minimum:g}")

                # balance leaves the wallet before anything points at it
                entry["pending"] = 0
                await self._write(cagnotte)

                previous = {"retrait": user.get("retrait"), "updatedAt": user.get("updatedAt")}
                try:
                    user["retrait"] = {"status": RETRAIT_PENDING, "amount": pending, "requestedAt": now_iso()}
                    user["updatedAt"] = now_iso()
                    await self.users.write_users(users)
                    payment = await record_pending_payment(self.store, user=user, amount=pending)
                except Exception as e:
                    logger.error(f"[wallet] withdrawal for user={user_id} failed, restoring pending={pending}: {e}")
                    user.update(previous)
                    await self.users.write_users(users)
                    entry["pending"] = pending
                    await self._write(cagnotte)
                    raise

        logger.info(f"[wallet] withdrawal requested user={user_id} amount={pending} payment={payment['id']}")
        return {"ok": True, "retrait": user["retrait"], "pending": 0, "paymentId": payment["id"]}

    async def list_payments(self) -> dict:
        payments = await read_payments(self.store)
        return {"ok": True, "total": _money(*(p["amount"] for p in payments)), "payments": payments}

    async def _close_payment(self, payment_id: str, validate: bool) -> dict:
        async with self.lock:
            async with self.users.lock:
                payments = await read_payments(self.store)
                payment = next((p for p in payments if p["id"] == str(payment_id)), None)
                if payment is None:
                    raise NotFoundError("Paiement introuvable")

                users = await self.users.read_users()
                user = await self.users.get_user(payment["userId"], users)

                # off the queue first: a payment reaches exactly one terminal state
                remaining = [p for p in payments if p["id"] != payment["id"]]
                await write_payments(self.store, remaining)

                cagnotte = entry = None
                pending = None
                try:
                    if validate:
                        user["gagneSurBNI"] = _money(user["gagneSurBNI"], payment["amount"])
                    else:
                        cagnotte = await self._read()
                        entry = _entry(cagnotte, user["id"])
                        previous_pending = entry["pending"]
                        entry["pending"] = _money(previous_pending, payment["amount"])
                        pending = entry["pending"]
                        await self._write(cagnotte)

                    user["retrait"] = idle_retrait()
                    user["updatedAt"] = now_iso()
                    await self.users.write_users(users)
                except Exception as e:
                    logger.error(f"[wallet] closing payment {payment['id']} failed, putting it back in the queue: {e}")
                    if entry is not None:
                        entry["pending"] = previous_pending
                        await self._write(cagnotte)
                    await write_payments(self.store, payments)
                    raise

        logger.info(
            f"[wallet] payment {payment['id']} {'validated' if validate else 'cancelled'} "
            f"user={user['id']} amount={payment['amount']}"
        )
        out = {"ok": True, "user": user, "remaining": len(remaining)}
        if pending is not None:
            out["pending"] = pending
        return out

    async def validate_withdrawal(self, payment_id: str) -> dict:
        return await self._close_payment(payment_id, validate=True)

    async def cancel_withdrawal(self, payment_id: str) -> dict:
        return await self._close_payment(payment_id, validate=False)

    async def delete_user(self, user_id: str) -> None:
        async with self.lock:
            cagnotte = await self._read()
            if cagnotte.pop(str(user_id), None) is not None:
                await self._write(cagnotte)
            payments = await read_payments(self.store)
            kept = [p for p in payments if p["userId"] != str(user_id)]
            if len(kept) != len(payments):
                await write_payments(self.store, kept)
