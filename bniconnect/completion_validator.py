# bniconnect/completion_validator.py

import logging

from bniconnect.base_utils import BaseUtils

logger = logging.getLogger("bni_backend")


class CompletionValidator(BaseUtils):
    """
    The only path that grants a questionnaire reward. Check, completion row
    and wallet credit all happen inside the responses mutex, so concurrent or
    repeated validate calls credit at most once.
    """

    def __init__(self, catalog, responses, wallet) -> None:
        self.catalog = catalog
        self.responses = responses
        self.wallet = wallet

    async def validate(self, questionnaire_id: str, user_id: str) -> dict:
        questionnaire_id, user_id = str(questionnaire_id), str(user_id)
        catalog = await self.catalog.load_all()
        questionnaire = await self.catalog.get_questionnaire(questionnaire_id, catalog)
        # full membership, independent of any client-side "already answered" view
        member_ids = [q["id"] for q in catalog["questions"] if q.get("questionnaire") == questionnaire_id]

        async with self.responses.mutex:
            responses = await self.responses.read()

            if self.responses.find_completion(responses, user_id, questionnaire_id) is not None:
                return {"ok": True, "alreadyCompleted": True, "message": "Questionnaire déjà complété"}

            answered = self.responses.answered_ids(responses, user_id, questionnaire_id)
            answered_set = set(answered)
            missing = [qid for qid in member_ids if qid not in answered_set]
            if missing:
                return {
                    "ok": False,
                    "incomplete": True,
                    "totalQuestions": len(member_ids),
                    "answeredCount": len(answered_set & set(member_ids)),
                    "answeredQuestionIds": answered,
                    "missingCount": len(missing),
                    "missingQuestionIds": missing,
                    "message": f"Il reste {len(missing)} question(s) à répondre",
                }

            completion = self.responses.append_completion(responses, user_id, questionnaire_id)
            await self.responses.write(responses)
            reward = float(questionnaire.get("reward") or 0)
            try:
                pending = await self.wallet.credit_questionnaire(user_id, reward)
            except Exception as e:
                # no completion without its credit, so a retry can still pay
                logger.error(f"[validator] credit failed questionnaire={questionnaire_id} user={user_id}: {e}")
                responses["completions"] = [c for c in responses["completions"] if c is not completion]
                await self.responses.write(responses)
                raise

        logger.info(f"[validator] questionnaire={questionnaire_id} completed by user={user_id}, reward={reward}")
        return {
            "ok": True,
            "completed": True,
            "reward": reward,
            "pending": pending,
            "message": "Questionnaire validé avec succès",
        }

    async def mark_completed(self, questionnaire_id: str, user_id: str) -> dict:
        """
        Resync marker: records the completion without a coverage check and
        without a reward. Rows it creates carry `autoMarked: true`.
        """
        _, created = await self.responses.upsert_completion(user_id, questionnaire_id, autoMarked=True)
        if not created:
            return {"ok": True, "alreadyMarked": True}
        return {"ok": True, "marked": True}
