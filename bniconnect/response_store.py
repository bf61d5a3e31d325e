# bniconnect/response_store.py

import asyncio
import logging

from bniconnect.base_utils import BaseUtils, as_array, new_id, now_iso
from bniconnect.entities import RESPONSES_KEY
from bniconnect.errors import NotFoundError

logger = logging.getLogger("bni_backend")


def _same_triple(row: dict, user_id: str, question_id: str, questionnaire_id: str | None) -> bool:
    # exact match, the null questionnaire included: random-mode and
    # questionnaire-mode answers to one question are distinct rows
    return (
        row.get("userId") == user_id
        and row.get("questionId") == question_id
        and (row.get("questionnaireId") or None) == questionnaire_id
    )


class ResponseStore(BaseUtils):
    """
    reponses.json: {answers: [Answer], completions: [Completion]}

    The whole log is read, mutated and written back, so every mutation runs
    under `self.mutex`. Callers composing several steps (the completion
    validator) hold the mutex themselves and use `read()`/`write()` directly.
    """

    def __init__(self, store, cache) -> None:
        self.store = store
        self.cache = cache
        self.mutex = asyncio.Lock()

    async def read(self) -> dict:
        data = await self.store.read(RESPONSES_KEY, {"answers": [], "completions": []})
        data = data if isinstance(data, dict) else {}
        return {
            "answers": [a for a in as_array(data.get("answers")) if isinstance(a, dict)],
            "completions": [c for c in as_array(data.get("completions")) if isinstance(c, dict)],
        }

    async def write(self, responses: dict) -> None:
        await self.store.write(RESPONSES_KEY, responses)
        self.cache.invalidate("responses")

    # -----------------------
    # Answers
    # -----------------------

    def _apply_upsert(self, responses: dict, entry: dict) -> bool:
        user_id = str(entry["userId"])
        question_id = str(entry["questionId"])
        questionnaire_id = str(entry["questionnaireId"]) if entry.get("questionnaireId") else None
        title = self._coerce_field_to_str(entry.get("questionTitle")) or None

        for i, row in enumerate(responses["answers"]):
            if _same_triple(row, user_id, question_id, questionnaire_id):
                responses["answers"][i] = {
                    **row,
                    "userName": entry.get("userName") or row.get("userName"),
                    "questionTitle": title or row.get("questionTitle"),
                    "answer": entry.get("answer", ""),
                    "correct": bool(entry.get("correct")),
                    "isCaptcha": bool(entry.get("isCaptcha")),
                    "updatedAt": now_iso(),
                }
                return True

        responses["answers"].append({
            "id": new_id("ans"),
            "userId": user_id,
            "userName": entry.get("userName"),
            "questionnaireId": questionnaire_id,
            "questionId": question_id,
            "questionTitle": title,
            "answer": entry.get("answer", ""),
            "correct": bool(entry.get("correct")),
            "isCaptcha": bool(entry.get("isCaptcha")),
            "createdAt": now_iso(),
        })
        return False

    async def upsert_answer(self, entry: dict) -> bool:
        """
        Insert or update the row for (userId, questionId, questionnaireId).
        Returns True when an existing row was updated.
        """
        async with self.mutex:
            responses = await self.read()
            updated = self._apply_upsert(responses, entry)
            await self.write(responses)

        logger.info(
            f"[responses] {'updated' if updated else 'added'} answer "
            f"user={entry['userId']} question={entry['questionId']} questionnaire={entry.get('questionnaireId')}"
        )
        return updated

    async def sync_answers(self, questionnaire_id: str, user_id: str, user_name: str, answers: list[dict]) -> dict:
        """Batch upsert of a client-side backup; safe to replay."""
        updated = created = 0
        async with self.mutex:
            responses = await self.read()
            for item in answers:
                question_id = str(item.get("questionId") or "").strip()
                if not question_id:
                    continue
                was_update = self._apply_upsert(responses, {
                    "userId": user_id,
                    "userName": user_name,
                    "questionnaireId": questionnaire_id,
                    "questionId": question_id,
                    "questionTitle": item.get("questionTitle"),
                    "answer": item.get("answer", ""),
                    "correct": item.get("correct", False),
                    "isCaptcha": item.get("isCaptcha", False),
                })
                if was_update:
                    updated += 1
                else:
                    created += 1
            if updated or created:
                await self.write(responses)

        logger.info(f"[responses] synced questionnaire={questionnaire_id} user={user_id} updated={updated} created={created}")
        return {"ok": True, "synced": updated + created, "updated": updated, "created": created}

    async def delete_answer(self, answer_id: str) -> None:
        async with self.mutex:
            responses = await self.read()
            kept = [a for a in responses["answers"] if a.get("id") != str(answer_id)]
            if len(kept) == len(responses["answers"]):
                raise NotFoundError("Réponse introuvable")
            responses["answers"] = kept
            await self.write(responses)
        logger.info(f"[responses] deleted answer {answer_id}")

    async def delete_user_rows(self, user_id: str) -> int:
        async with self.mutex:
            responses = await self.read()
            before = len(responses["answers"]) + len(responses["completions"])
            responses["answers"] = [a for a in responses["answers"] if a.get("userId") != str(user_id)]
            responses["completions"] = [c for c in responses["completions"] if c.get("userId") != str(user_id)]
            removed = before - len(responses["answers"]) - len(responses["completions"])
            if removed:
                await self.write(responses)
            return removed

    # -----------------------
    # Completions
    # -----------------------

    @staticmethod
    def find_completion(responses: dict, user_id: str, questionnaire_id: str) -> dict | None:
        for c in responses["completions"]:
            if c.get("userId") == str(user_id) and c.get("questionnaireId") == str(questionnaire_id):
                return c
        return None

    @staticmethod
    def append_completion(responses: dict, user_id: str, questionnaire_id: str, **extra) -> dict:
        entry = {
            "id": new_id("cmp"),
            "userId": str(user_id),
            "questionnaireId": str(questionnaire_id),
            "completedAt": now_iso(),
            **extra,
        }
        responses["completions"].append(entry)
        return entry

    async def upsert_completion(self, user_id: str, questionnaire_id: str, **extra) -> tuple[dict, bool]:
        """Append a completion unless one exists. Returns (row, created)."""
        async with self.mutex:
            responses = await self.read()
            existing = self.find_completion(responses, user_id, questionnaire_id)
            if existing is not None:
                return existing, False
            entry = self.append_completion(responses, user_id, questionnaire_id, **extra)
            await self.write(responses)
        logger.info(f"[responses] completion recorded user={user_id} questionnaire={questionnaire_id}")
        return entry, True

    # -----------------------
    # Queries
    # -----------------------

    @staticmethod
    def answered_ids(responses: dict, user_id: str, questionnaire_id: str | None) -> list[str]:
        seen = []
        for a in responses["answers"]:
            if a.get("userId") == str(user_id) and (a.get("questionnaireId") or None) == questionnaire_id:
                if a.get("questionId") not in seen:
                    seen.append(a.get("questionId"))
        return seen

    async def user_answered_question_ids(self, user_id: str) -> set[str]:
        """Every question this user has an answer for, any mode."""
        return {a.get("questionId") for a in (await self.read())["answers"] if a.get("userId") == str(user_id)}
