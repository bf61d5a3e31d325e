# bniconnect/backend.py

import json
import logging
import re

from bniconnect.base_utils import BaseUtils, now_iso
from bniconnect.catalog_repository import CatalogRepository
from bniconnect.completion_validator import CompletionValidator
from bniconnect.cooldown_ledger import CooldownLedger
from bniconnect.document_store import build_document_store
from bniconnect.entities import SETTINGS_KEY
from bniconnect.errors import NotFoundError, ValidationError
from bniconnect.image_store import build_image_store, is_base64_image
from bniconnect.random_selector import RandomSelector, clamp_count
from bniconnect.response_store import ResponseStore
from bniconnect.simple_cache import SimpleCache
from bniconnect.system_settings import DEFAULT_SETTINGS, SettingsService
from bniconnect.user_repository import UserRepository
from bniconnect.user_variable_tags import field_for_tag_name
from bniconnect.wallet_ledger import WalletLedger

logger = logging.getLogger("bni_backend")

DB_SCOPES = ("full", "public", "minimal")
# seconds, per /api/db view
DB_VIEW_TTL = {"minimal": 30, "public": 15, "full": 10}


def _require(value, message: str) -> str:
    s = str(value or "").strip()
    if not s:
        raise ValidationError(message)
    return s


class Backend(BaseUtils):
    """
    Wires the stores, repositories and ledgers together and exposes one
    handler per API operation. Handlers take plain values and return the
    JSON-ready dict sent to the client.
    """

    def __init__(self, store=None, image_store=None, cache=None):
        self.store = store or build_document_store()
        self.image_store = image_store or build_image_store()
        self.cache = cache or SimpleCache(ttl_seconds=10)

        self.settings = SettingsService(self.store, self.cache)
        self.catalog = CatalogRepository(self.store, self.image_store, self.cache)
        self.users = UserRepository(self.store)
        self.cooldowns = CooldownLedger(self.store)
        self.responses = ResponseStore(self.store, self.cache)
        self.wallet = WalletLedger(self.store, self.users)
        self.validator = CompletionValidator(self.catalog, self.responses, self.wallet)
        self.selector = RandomSelector(
            self.catalog, self.users, self.cooldowns, self.responses, self.wallet, self.settings
        )

    async def startup(self) -> None:
        await self.catalog.ensure_seeded()
        await self.store.read(SETTINGS_KEY, dict(DEFAULT_SETTINGS))
        logger.info(f"[backend] ready on store '{self.store.name}'")

    def _debug_payload(self, label: str, payload) -> None:
        try:
            preview = json.dumps(payload, indent=2, ensure_ascii=False)[:2000]
        except (TypeError, ValueError):
            preview = str(payload)[:2000]
        logger.debug(f"{label} request {preview}")

    async def _externalize(self, value, image_id: str):
        if value and is_base64_image(value):
            url = await self.image_store.store_image(value, image_id)
            logger.info(f"[images] externalized {image_id} -> {url}")
            return url
        return value

    # -----------------------
    # Catalog
    # -----------------------

    async def handle_get_db(self, scope: str | None = None) -> dict:
        scope = str(scope or "full").strip().lower()
        if scope == "lite":
            scope = "public"
        if scope not in DB_SCOPES:
            scope = "full"

        cache_key = f"db:{scope}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        catalog = await self.catalog.load_all()
        tags, questions, questionnaires = catalog["tags"], catalog["questions"], catalog["questionnaires"]
        answers, completions = [], []
        if scope == "minimal":
            tags = []
            questions = [q for q in questions if q.get("active")]
            questionnaires = [qn for qn in questionnaires if qn.get("visible")]
        elif scope == "public":
            questions = [q for q in questions if q.get("active") or q.get("questionnaire")]
        else:
            responses = await self.responses.read()
            answers, completions = responses["answers"], responses["completions"]

        view = {
            "meta": {"version": 5, "updatedAt": now_iso(), "mode": scope},
            "user": None,
            "tags": tags,
            "questions": questions,
            "questionnaires": questionnaires,
            "answers": answers,
            "completions": completions,
        }
        cache_tags = ("questions", "responses") if scope == "full" else ("questions",)
        self.cache.set(cache_key, view, ttl=DB_VIEW_TTL[scope], tags=cache_tags)
        return view

    async def handle_put_db(self, body: dict) -> dict:
        self._debug_payload("put_db", {k: len(body.get(k) or []) for k in ("tags", "questions", "questionnaires")})
        saved = await self.catalog.save_all(
            body.get("tags") or [], body.get("questions") or [], body.get("questionnaires") or []
        )
        # answers/completions are never overwritten from here
        responses = await self.responses.read()
        return {
            "meta": {"version": 5, "updatedAt": now_iso()},
            "user": None,
            **saved,
            "answers": responses["answers"],
            "completions": responses["completions"],
        }

    async def handle_questionnaire_questions(self, questionnaire_id: str, user_id: str | None = None) -> dict:
        questionnaire, questions = await self.catalog.questionnaire_questions(questionnaire_id)
        out = {"ok": True, "questionnaire": questionnaire, "questions": questions}
        if user_id:
            responses = await self.responses.read()
            out["answeredQuestionIds"] = ResponseStore.answered_ids(responses, str(user_id), questionnaire["id"])
            out["completed"] = ResponseStore.find_completion(responses, user_id, questionnaire["id"]) is not None
        return out

    async def handle_questionnaires_progress(self, user_id: str) -> dict:
        await self.users.get_user(user_id)
        catalog = await self.catalog.load_all()
        responses = await self.responses.read()

        progress = {}
        for qn in catalog["questionnaires"]:
            member_ids = set(qn["questionorder"])
            answered = [
                qid for qid in ResponseStore.answered_ids(responses, str(user_id), qn["id"]) if qid in member_ids
            ]
            progress[qn["id"]] = {
                "totalQuestions": len(member_ids),
                "answeredCount": len(answered),
                "answeredQuestionIds": answered,
                "isCompleted": ResponseStore.find_completion(responses, user_id, qn["id"]) is not None,
                "remaining": len(member_ids) - len(answered),
            }
        return {"ok": True, "progress": progress}

    # -----------------------
    # Random questions / quota
    # -----------------------

    async def handle_random_questions(self, user_id: str, n=None) -> dict:
        return await self.selector.select_random(_require(user_id, "userId requis"), clamp_count(n or 1))

    async def handle_earn_random(self, user_id: str) -> dict:
        user_id = _require(user_id, "userId requis")
        await self.users.get_user(user_id)
        return await self.wallet.credit_random(user_id, await self.settings.get_settings())

    async def handle_skip_random(self, user_id: str) -> dict:
        user_id = _require(user_id, "userId requis")
        await self.users.get_user(user_id)
        return await self.wallet.consume_quota_only(user_id, await self.settings.get_settings())

    # -----------------------
    # Answers
    # -----------------------

    async def handle_append_answer(self, body: dict) -> dict:
        self._debug_payload("append_answer", {k: v for k, v in body.items() if k != "answer"})
        user_id = _require(body.get("userId"), "Paramètres manquants")
        question_id = _require(body.get("questionId"), "Paramètres manquants")
        user_name = await self.users.resolve_user_name(user_id, body.get("userName"))

        # inline media never reaches the responses log
        answer = await self._externalize(body.get("answer") or "", f"answer_{user_id}_{question_id}_{self._now_ms()}")

        updated = await self.responses.upsert_answer({
            **body,
            "userId": user_id,
            "questionId": question_id,
            "userName": user_name,
            "answer": answer,
        })
        await self.cooldowns.record_shown_best_effort(user_id, [question_id])
        return {"ok": True, "updated": updated}

    async def handle_sync_answers(self, questionnaire_id: str, body: dict) -> dict:
        questionnaire_id = _require(questionnaire_id, "questionnaireId et userId requis")
        user_id = _require(body.get("userId"), "questionnaireId et userId requis")
        items = [a for a in (body.get("answers") or []) if isinstance(a, dict)]
        if not items:
            return {"ok": True, "synced": 0, "updated": 0, "created": 0}

        user_name = await self.users.resolve_user_name(user_id, body.get("userName"))
        prepared = []
        for item in items:
            question_id = str(item.get("questionId") or "").strip()
            if not question_id:
                continue
            answer = await self._externalize(
                item.get("answer") or "", f"answer_{user_id}_{question_id}_{self._now_ms()}"
            )
            prepared.append({**item, "questionId": question_id, "answer": answer})

        result = await self.responses.sync_answers(questionnaire_id, user_id, user_name, prepared)
        await self.cooldowns.record_shown_best_effort(user_id, [p["questionId"] for p in prepared])
        return result

    async def handle_answered(self, questionnaire_id: str, user_id: str) -> dict:
        responses = await self.responses.read()
        answered = ResponseStore.answered_ids(responses, str(user_id), str(questionnaire_id))
        return {
            "ok": True,
            "completed": ResponseStore.find_completion(responses, user_id, questionnaire_id) is not None,
            "answeredQuestionIds": answered,
            "answeredCount": len(answered),
        }

    async def handle_validate(self, questionnaire_id: str, user_id: str) -> dict:
        user_id = _require(user_id, "questionnaireId et userId requis")
        return await self.validator.validate(questionnaire_id, user_id)

    async def handle_mark_completed(self, questionnaire_id: str, user_id: str) -> dict:
        user_id = _require(user_id, "questionnaireId et userId requis")
        return await self.validator.mark_completed(questionnaire_id, user_id)

    async def handle_delete_answer(self, answer_id: str) -> dict:
        await self.responses.delete_answer(answer_id)
        return {"ok": True}

    # -----------------------
    # User profile
    # -----------------------

    async def handle_sensible(self, body: dict) -> dict:
        user_id = _require(body.get("userId"), "userId requis")
        question_id = str(body.get("questionId") or "").strip() or None
        tag = str(body.get("tagName") or "").strip()
        answer = body.get("answer")

        if body.get("isCaptcha"):
            await self.users.get_user(user_id)
            if question_id:
                await self.cooldowns.record_shown_best_effort(user_id, [question_id])
            return {"ok": True, "captcha": True}

        field = field_for_tag_name(tag)
        if field == "photoProfil":
            answer = await self._externalize(str(answer or ""), f"user_{user_id}_photo")
        elif field is None:
            base = f"tag_{re.sub(r'[^a-z0-9_-]', '', tag.lower())[:32]}" if tag else f"q_{question_id or 'unknown'}"
            answer = await self._externalize(answer, f"sensible_{user_id}_{base}_{self._now_ms()}")

        async with self.users.lock:
            users = await self.users.read_users()
            user = await self.users.get_user(user_id, users)
            if field:
                user[field] = str(answer if answer is not None else "")
            elif tag:
                existing = next(
                    (x for x in user["sensibleAnswersTagged"] if str(x.get("tag") or "").strip().lower() == tag.lower()),
                    None,
                )
                if existing is not None:
                    existing["answer"] = answer
                else:
                    user["sensibleAnswersTagged"].append({"tag": tag, "answer": answer})
            else:
                user["sensibleAnswersUntagged"].append({
                    "questionId": question_id,
                    "questionTitle": body.get("questionTitle") or None,
                    "answer": answer,
                })
            user["updatedAt"] = now_iso()
            await self.users.write_users(users)

        if question_id:
            await self.cooldowns.record_shown_best_effort(user_id, [question_id])
        if field:
            return {"ok": True, "updated": {"field": field}}
        return {"ok": True}

    # -----------------------
    # Wallet / payments
    # -----------------------

    async def handle_wallet(self, user_id: str) -> dict:
        return await self.wallet.summary(user_id, await self.settings.get_settings())

    async def handle_request_withdraw(self, user_id: str) -> dict:
        user_id = _require(user_id, "userId requis")
        return await self.wallet.request_withdrawal(user_id, await self.settings.get_settings())

    async def handle_list_payments(self) -> dict:
        return await self.wallet.list_payments()

    async def handle_validate_payment(self, payment_id: str) -> dict:
        return await self.wallet.validate_withdrawal(payment_id)

    async def handle_cancel_payment(self, payment_id: str) -> dict:
        return await self.wallet.cancel_withdrawal(payment_id)

    # -----------------------
    # Admin
    # -----------------------

    async def handle_get_settings(self) -> dict:
        return {"ok": True, "settings": await self.settings.get_settings()}

    async def handle_put_settings(self, body: dict) -> dict:
        return {"ok": True, "settings": await self.settings.update_settings(body)}

    async def handle_delete_user(self, user_id: str) -> dict:
        async with self.users.lock:
            users = await self.users.read_users()
            kept = [u for u in users if u["id"] != str(user_id)]
            if len(kept) == len(users):
                raise NotFoundError("Utilisateur introuvable")
            await self.users.write_users(kept)

        removed_rows = await self.responses.delete_user_rows(user_id)
        await self.wallet.delete_user(user_id)
        await self.cooldowns.delete_user(user_id)
        logger.info(f"[admin] deleted user {user_id} ({removed_rows} response rows)")
        return {"ok": True}

    async def handle_get_image(self, filename: str) -> tuple[bytes, str]:
        entry = await self.image_store.get_image(filename)
        if entry is None:
            raise NotFoundError("Image introuvable")
        return entry
