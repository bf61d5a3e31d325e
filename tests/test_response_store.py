import asyncio

import pytest

from bniconnect.errors import NotFoundError
from bniconnect.response_store import ResponseStore
from bniconnect.simple_cache import SimpleCache

from helpers import MemoryDocumentStore, run


@pytest.fixture
def responses():
    return ResponseStore(MemoryDocumentStore(), SimpleCache())


def answer(**kw):
    return {"userId": "u1", "userName": "Marie Curie", "questionId": "q1", "questionnaireId": None,
            "questionTitle": "Couleur ?", "answer": "bleu", **kw}


def test_second_submission_updates_in_place(responses):
    async def scenario():
        first = await responses.upsert_answer(answer())
        second = await responses.upsert_answer(answer(answer="rouge"))
        return first, second, await responses.read()

    first, second, log = run(scenario())
    assert (first, second) == (False, True)
    assert len(log["answers"]) == 1
    assert log["answers"][0]["answer"] == "rouge"
    assert "updatedAt" in log["answers"][0]


def test_random_and_questionnaire_answers_are_distinct_rows(responses):
    async def scenario():
        await responses.upsert_answer(answer())
        await responses.upsert_answer(answer(questionnaireId="qn1"))
        await responses.upsert_answer(answer(questionnaireId="qn2"))
        await responses.upsert_answer(answer(answer="vert"))
        return await responses.read()

    log = run(scenario())
    assert len(log["answers"]) == 3
    random_row = [a for a in log["answers"] if a["questionnaireId"] is None]
    assert random_row[0]["answer"] == "vert"


def test_concurrent_appends_for_same_triple_leave_one_row(responses):
    async def scenario():
        results = await asyncio.gather(*(responses.upsert_answer(answer(answer=str(i))) for i in range(8)))
        return results, await responses.read()

    results, log = run(scenario())
    assert len(log["answers"]) == 1
    assert sorted(results) == [False] + [True] * 7


def test_mutex_released_after_failed_write(responses):
    original = responses.store.write
    calls = {"n": 0}

    async def flaky(key, value):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OSError("disk full")
        await original(key, value)

    async def scenario():
        await responses.read()
        responses.store.write = flaky
        with pytest.raises(OSError):
            await responses.upsert_answer(answer())
        await asyncio.wait_for(responses.upsert_answer(answer()), timeout=1)
        return await responses.read()

    assert len(run(scenario())["answers"]) == 1
    assert not responses.mutex.locked()


def test_sync_answers_is_idempotent(responses):
    batch = [{"questionId": "q1", "answer": "a"}, {"questionId": "q2", "answer": "b"}, {"questionId": ""}]

    async def scenario():
        first = await responses.sync_answers("qn1", "u1", "Marie", batch)
        second = await responses.sync_answers("qn1", "u1", "Marie", batch)
        return first, second, await responses.read()

    first, second, log = run(scenario())
    assert first == {"ok": True, "synced": 2, "updated": 0, "created": 2}
    assert second == {"ok": True, "synced": 2, "updated": 2, "created": 0}
    assert len(log["answers"]) == 2
    assert all(a["questionnaireId"] == "qn1" for a in log["answers"])


def test_upsert_completion_is_idempotent(responses):
    async def scenario():
        _, created = await responses.upsert_completion("u1", "qn1")
        _, again = await responses.upsert_completion("u1", "qn1")
        return created, again, await responses.read()

    created, again, log = run(scenario())
    assert (created, again) == (True, False)
    assert len(log["completions"]) == 1


def test_delete_answer(responses):
    async def scenario():
        await responses.upsert_answer(answer())
        row = (await responses.read())["answers"][0]
        await responses.delete_answer(row["id"])
        with pytest.raises(NotFoundError):
            await responses.delete_answer(row["id"])
        return await responses.read()

    assert run(scenario())["answers"] == []


def test_delete_user_rows_cascades(responses):
    async def scenario():
        await responses.upsert_answer(answer())
        await responses.upsert_answer(answer(userId="u2"))
        await responses.upsert_completion("u1", "qn1")
        removed = await responses.delete_user_rows("u1")
        return removed, await responses.read()

    removed, log = run(scenario())
    assert removed == 2
    assert [a["userId"] for a in log["answers"]] == ["u2"]
    assert log["completions"] == []


def test_writes_invalidate_responses_cache(responses):
    responses.cache.set("db:full", {"stale": True}, tags=("questions", "responses"))
    run(responses.upsert_answer(answer()))
    assert "db:full" not in responses.cache
