# bniconnect/catalog_repository.py

import logging

from bniconnect.base_utils import BaseUtils, as_array, now_iso
from bniconnect.entities import (
    QUESTIONNAIRES_KEY,
    QUESTIONS_KEY,
    SEED_TAGS,
    TAGS_KEY,
    is_questionnaire_active,
    normalize_question,
    normalize_questionnaire,
    normalize_tag,
)
from bniconnect.errors import NotFoundError
from bniconnect.image_store import is_base64_image
from bniconnect.user_variable_tags import USER_VARIABLE_TAGS, is_user_variable_tag

logger = logging.getLogger("bni_backend")


def reconcile_questionnaires(questions: list[dict], questionnaires: list[dict]) -> list[dict]:
    """
    `question.questionnaire` decides membership. Each questionnaire keeps the
    ids of its existing `questionorder` that still belong to it, in order, then
    gets the linked-but-missing ids appended in question-list order.
    """
    members_by_qn: dict[str, list[str]] = {}
    for q in questions:
        if q.get("questionnaire"):
            members_by_qn.setdefault(q["questionnaire"], []).append(q["id"])

    out = []
    for qn in questionnaires:
        members = members_by_qn.get(qn["id"], [])
        member_set = set(members)
        order = []
        seen = set()
        for qid in as_array(qn.get("questionorder")):
            qid = str(qid)
            if qid in member_set and qid not in seen:
                order.append(qid)
                seen.add(qid)
        order.extend(qid for qid in members if qid not in seen)
        out.append({**qn, "questionIds": list(members), "questionorder": order})
    return out


def apply_questionnaire_lock(questions: list[dict], questionnaires: list[dict], now) -> list[dict]:
    """
    A question linked to an unreleased or currently active questionnaire is
    forced inactive; once the questionnaire is neither, questions that were
    forced inactive come back.
    """
    by_id = {qn["id"]: qn for qn in questionnaires}
    out = []
    for q in questions:
        qn = by_id.get(q.get("questionnaire") or "")
        if qn is None:
            out.append(q)
            continue
        if qn.get("unrelease") or is_questionnaire_active(qn, now):
            if q.get("active"):
                out.append({**q, "active": False, "forcedInactiveByQuestionnaire": True})
            else:
                out.append({**q, "active": False})
        elif q.get("forcedInactiveByQuestionnaire"):
            out.append({**q, "active": True, "forcedInactiveByQuestionnaire": False})
        else:
            out.append(q)
    return out


def strip_user_variable_tags(tags: list[dict]) -> list[dict]:
    return [t for t in tags if isinstance(t, dict) and not is_user_variable_tag(t)]


class CatalogRepository(BaseUtils):
    def __init__(self, store, image_store, cache) -> None:
        self.store = store
        self.image_store = image_store
        self.cache = cache

    async def ensure_seeded(self) -> None:
        existing = as_array(await self.store.read(TAGS_KEY, [dict(t, createdAt=now_iso()) for t in SEED_TAGS]))
        names = {str(t.get("name") or "").strip().lower() for t in existing if isinstance(t, dict)}
        missing = [dict(t, createdAt=now_iso()) for t in SEED_TAGS if t["name"].lower() not in names]
        if missing:
            await self.store.write(TAGS_KEY, existing + missing)
            logger.info(f"[catalog] seeded {len(missing)} base tags")
        await self.store.read(QUESTIONS_KEY, [])
        await self.store.read(QUESTIONNAIRES_KEY, [])

    async def load_all(self) -> dict:
        persisted = [normalize_tag(t) for t in as_array(await self.store.read(TAGS_KEY, [])) if isinstance(t, dict)]
        tags = self._merge_user_variable_tags(persisted)

        questions = [normalize_question(q) for q in as_array(await self.store.read(QUESTIONS_KEY, [])) if isinstance(q, dict)]
        questionnaires = [
            normalize_questionnaire(qn)
            for qn in as_array(await self.store.read(QUESTIONNAIRES_KEY, []))
            if isinstance(qn, dict)
        ]

        # reconciled in memory only; the next save persists it
        questionnaires = reconcile_questionnaires(questions, questionnaires)
        questions = apply_questionnaire_lock(questions, questionnaires, self._now())
        return {"tags": tags, "questions": questions, "questionnaires": questionnaires}

    async def save_all(self, tags, questions, questionnaires) -> dict:
        """
        Bulk upsert of the catalog. The returned dict is the authoritative
        post-write state: callers adopt it instead of re-reading.
        """
        norm_tags = [normalize_tag(t) for t in strip_user_variable_tags(as_array(tags))]

        norm_questions = []
        for raw in as_array(questions):
            if not isinstance(raw, dict):
                continue
            q = normalize_question(raw)
            if q.get("imageUrl") and is_base64_image(q["imageUrl"]):
                # ImageStoreError aborts the whole save: inline media is never persisted
                q["imageUrl"] = await self.image_store.store_image(q["imageUrl"], f"q_{q['id']}_img")
            norm_questions.append(q)

        norm_questionnaires = [normalize_questionnaire(qn) for qn in as_array(questionnaires) if isinstance(qn, dict)]
        final_questionnaires = [
            {**qn, "updatedAt": now_iso()}
            for qn in reconcile_questionnaires(norm_questions, norm_questionnaires)
        ]
        norm_questions = apply_questionnaire_lock(norm_questions, final_questionnaires, self._now())

        await self.store.write(TAGS_KEY, norm_tags)
        await self.store.write(QUESTIONS_KEY, norm_questions)
        await self.store.write(QUESTIONNAIRES_KEY, final_questionnaires)
        self.cache.invalidate("questions")

        logger.info(
            f"[catalog] saved {len(norm_tags)} tags, {len(norm_questions)} questions, "
            f"{len(final_questionnaires)} questionnaires"
        )
        return {"tags": norm_tags, "questions": norm_questions, "questionnaires": final_questionnaires}

    async def get_questionnaire(self, questionnaire_id: str, catalog: dict | None = None) -> dict:
        catalog = catalog or await self.load_all()
        for qn in catalog["questionnaires"]:
            if qn["id"] == str(questionnaire_id):
                return qn
        raise NotFoundError("Questionnaire introuvable")

    async def questionnaire_questions(self, questionnaire_id: str) -> tuple[dict, list[dict]]:
        """Member questions in `questionorder` order (cached under the `questions` tag)."""
        cache_key = f"qn:{questionnaire_id}:questions"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        catalog = await self.load_all()
        questionnaire = await self.get_questionnaire(questionnaire_id, catalog)
        by_id = {q["id"]: q for q in catalog["questions"] if q.get("questionnaire") == questionnaire["id"]}
        ordered = [by_id[qid] for qid in questionnaire["questionorder"] if qid in by_id]

        result = (questionnaire, ordered)
        self.cache.set(cache_key, result, ttl=30, tags=("questions",))
        return result

    def _merge_user_variable_tags(self, persisted: list[dict]) -> list[dict]:
        tags = list(persisted)
        by_id = {t["id"]: t for t in tags}
        names = {t["name"].strip().lower() for t in tags}
        for ht in USER_VARIABLE_TAGS:
            existing = by_id.get(ht["id"])
            if existing is not None:
                # reserved id on disk: enforce the canonical name
                existing["name"] = ht["name"]
                continue
            if ht["name"].lower() in names:
                continue
            tags.append({"id": ht["id"], "name": ht["name"], "createdAt": now_iso()})
        return tags
