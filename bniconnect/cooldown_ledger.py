# bniconnect/cooldown_ledger.py

import logging
import random

from bniconnect.base_utils import BaseUtils
from bniconnect.entities import COOLDOWNS_KEY

logger = logging.getLogger("bni_backend")

COOLDOWN_DAYS = 14
COOLDOWN_MS = COOLDOWN_DAYS * 24 * 60 * 60 * 1000
# Past the cooldown a question only comes back on a per-call draw.
# Non-deterministic on purpose: assert it statistically, do not pin it.
REAPPEAR_CHANCE = 0.05


def can_reappear(last_ms, now_ms: int, rng=None) -> bool:
    if not last_ms:
        return True
    if now_ms - int(last_ms) < COOLDOWN_MS:
        return False
    return (rng or random).random() < REAPPEAR_CHANCE


class CooldownLedger(BaseUtils):
    """
    questionCooldowns.json: {userId: {questionId: lastShownOrAnsweredMillis}}

    Not mutex-guarded: a lost cooldown update only lets a question come back
    early, and writes from answer paths are best-effort.
    """

    def __init__(self, store) -> None:
        self.store = store

    async def load(self) -> dict:
        data = await self.store.read(COOLDOWNS_KEY, {})
        return data if isinstance(data, dict) else {}

    async def for_user(self, user_id: str) -> dict:
        return dict((await self.load()).get(str(user_id)) or {})

    async def can_show(self, user_id: str, question_id: str, now_ms: int | None = None, rng=None) -> bool:
        now_ms = self._now_ms() if now_ms is None else now_ms
        last = (await self.for_user(user_id)).get(str(question_id))
        return can_reappear(last, now_ms, rng)

    async def record_shown(self, user_id: str, question_ids, now_ms: int | None = None) -> None:
        now_ms = self._now_ms() if now_ms is None else now_ms
        ids = [str(q) for q in question_ids if q]
        if not ids:
            return
        cooldowns = await self.load()
        user_entry = dict(cooldowns.get(str(user_id)) or {})
        for qid in ids:
            user_entry[qid] = now_ms
        cooldowns[str(user_id)] = user_entry
        await self.store.write(COOLDOWNS_KEY, cooldowns)

    async def record_shown_best_effort(self, user_id: str, question_ids, now_ms: int | None = None) -> bool:
        """
        Non-blocking side effect of answer paths: a failure is logged and
        reported through the return value, never raised to the caller.
        """
        try:
            await self.record_shown(user_id, question_ids, now_ms)
            return True
        except Exception as e:
            logger.warning(f"[cooldowns] could not record cooldown for user {user_id}: {e}")
            return False

    async def delete_user(self, user_id: str) -> None:
        cooldowns = await self.load()
        if cooldowns.pop(str(user_id), None) is not None:
            await self.store.write(COOLDOWNS_KEY, cooldowns)
