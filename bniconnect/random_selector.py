# bniconnect/random_selector.py

import logging
import random

from bniconnect.base_utils import BaseUtils, to_millis
from bniconnect.cooldown_ledger import can_reappear
from bniconnect.entities import is_priority_active
from bniconnect.user_variable_tags import field_for_tag_id

logger = logging.getLogger("bni_backend")

MAX_PER_CALL = 10
PRIORITY_CHANCE = 1 / 6


def clamp_count(raw) -> int:
    try:
        n = int(float(raw))
    except (TypeError, ValueError):
        return 1
    return max(1, min(MAX_PER_CALL, n))


def draw_without_replacement(priority: list, normal: list, count: int, rng) -> list:
    """
    Up to `count` picks. Each slot draws from `priority` with PRIORITY_CHANCE
    when it is non-empty, falls back to the other pool when the chosen one is
    empty, and removes the pick so no question is returned twice.
    """
    priority, normal = list(priority), list(normal)
    picked = []
    while len(picked) < count and (priority or normal):
        pool = normal
        if priority and (rng.random() < PRIORITY_CHANCE or not normal):
            pool = priority
        picked.append(pool.pop(rng.randrange(len(pool))))
    return picked


class RandomSelector(BaseUtils):
    def __init__(self, catalog, users, cooldowns, responses, wallet, settings) -> None:
        self.catalog = catalog
        self.users = users
        self.cooldowns = cooldowns
        self.responses = responses
        self.wallet = wallet
        self.settings = settings

    async def select_random(self, user_id: str, count=1, rng=None) -> dict:
        # request-local generator: concurrent selections never share draw state
        rng = rng or random.Random()
        user_id = str(user_id)
        now = self._now()
        now_ms = to_millis(now)

        user = await self.users.get_user(user_id)
        settings = await self.settings.get_settings()
        quota = await self.wallet.quota(user_id, settings, now)

        base = {
            "ok": True,
            "question": None,
            "questions": [],
            "dailyRemaining": quota["dailyRemaining"],
            "weeklyRemaining": quota["weeklyRemaining"],
            "dailyLimit": quota["dailyLimit"],
            "weeklyLimit": quota["weeklyLimit"],
        }
        if quota["exceeded"] == "daily":
            return {**base, "dailyRemaining": 0, "quotaExceeded": "daily"}
        if quota["exceeded"] == "weekly":
            return {**base, "weeklyRemaining": 0, "quotaExceeded": "weekly"}

        catalog = await self.catalog.load_all()
        user_cooldowns = await self.cooldowns.for_user(user_id)

        candidates = [
            q for q in catalog["questions"]
            if q.get("active") is True
            and not q.get("questionnaire")
            and can_reappear(user_cooldowns.get(q["id"]), now_ms, rng)
        ]

        candidates, to_seed = self._filter_filled_profile_fields(candidates, user, user_cooldowns)
        if to_seed:
            await self.cooldowns.record_shown_best_effort(user_id, to_seed, now_ms)

        candidates = await self._filter_answered_tags(candidates, catalog["questions"], user_id, user_cooldowns, now_ms, rng)

        if not candidates:
            return {**base, "noQuestionsAvailable": True}

        # never hand out more than the quota still allows
        count = min(clamp_count(count), quota["dailyRemaining"], quota["weeklyRemaining"])

        priority = [q for q in candidates if is_priority_active(q, now)]
        normal = [q for q in candidates if not is_priority_active(q, now)]
        picked = draw_without_replacement(priority, normal, count, rng)

        logger.debug(f"[random] user={user_id} pool={len(candidates)} priority={len(priority)} picked={[q['id'] for q in picked]}")
        return {**base, "question": picked[0] if picked else None, "questions": picked}

    def _filter_filled_profile_fields(self, candidates, user, user_cooldowns):
        """
        Pseudo-tag questions are only served while the matching profile field
        is empty. Filled ones without a cooldown entry get one seeded now.
        """
        kept, to_seed = [], []
        for q in candidates:
            field = field_for_tag_id(q.get("tagId"))
            if field is None:
                kept.append(q)
                continue
            if str(user.get(field) or "").strip():
                if not user_cooldowns.get(q["id"]):
                    to_seed.append(q["id"])
                continue
            kept.append(q)
        return kept, to_seed

    async def _filter_answered_tags(self, candidates, all_questions, user_id, user_cooldowns, now_ms, rng):
        answered_ids = await self.responses.user_answered_question_ids(user_id)
        if not answered_ids:
            return candidates

        tag_by_question = {q["id"]: q.get("tagId") for q in all_questions}
        # tag -> most recent cooldown timestamp among this user's answered questions
        tag_last_ms: dict[str, int] = {}
        for qid in answered_ids:
            tag = tag_by_question.get(qid)
            if not tag:
                continue
            last = int(user_cooldowns.get(qid) or 0)
            tag_last_ms[tag] = max(tag_last_ms.get(tag, 0), last)

        kept = []
        for q in candidates:
            tag = q.get("tagId")
            if tag and tag in tag_last_ms and not can_reappear(tag_last_ms[tag], now_ms, rng):
                continue
            kept.append(q)
        return kept
