import pytest
from fastapi.testclient import TestClient

from bniconnect.entities import CAGNOTTE_KEY
from server import create_app

from helpers import make_user, run

PNG = "data:image/png;base64,iVBORw0KGgo="


@pytest.fixture
def client(backend, seed_users):
    seed_users(make_user("u1", compteBancaire="123"), make_user("u2"))
    with TestClient(create_app(backend)) as c:
        yield c


def put_catalog(client, questions, questionnaires=(), tags=()):
    res = client.put("/api/db", json={"tags": list(tags), "questions": questions, "questionnaires": list(questionnaires)})
    assert res.status_code == 200
    return res.json()


def test_health_and_seed(client):
    assert client.get("/api/health").json() == {"ok": True}
    tags = client.get("/api/db?scope=full").json()["tags"]
    assert {"Fun", "État", "Nouvel an"} <= {t["name"] for t in tags}


def test_append_requires_ids(client):
    res = client.post("/api/answers/append", json={"userId": "u1"})
    assert res.status_code == 400
    assert res.json() == {"error": "Paramètres manquants"}


def test_append_upserts_and_resolves_user_name(client):
    body = {"userId": "u1", "userName": "Utilisateur", "questionId": "q1", "answer": "a"}
    assert client.post("/api/answers/append", json=body).json() == {"ok": True, "updated": False}
    assert client.post("/api/answers/append", json={**body, "answer": "b"}).json() == {"ok": True, "updated": True}

    answers = client.get("/api/db?scope=full").json()["answers"]
    assert len(answers) == 1
    assert answers[0]["answer"] == "b"
    assert answers[0]["userName"] == "Marie Curie"


def test_photo_answer_is_externalized(client):
    client.post("/api/answers/append", json={"userId": "u1", "questionId": "qp", "answer": PNG})
    stored = client.get("/api/db").json()["answers"][0]["answer"]
    assert stored.startswith("/api/images/answer_u1_qp_")

    img = client.get(stored)
    assert img.status_code == 200
    assert img.headers["content-type"] == "image/png"
    assert client.get("/api/images/nope.png").status_code == 404


def test_questionnaire_flow(client):
    put_catalog(client, [
        {"id": "q1", "title": "Un", "questionnaire": "qn1"},
        {"id": "q2", "title": "Deux", "questionnaire": "qn1"},
        {"id": "q3", "title": "Trois", "questionnaire": "qn1"},
    ], [{"id": "qn1", "name": "Sondage", "reward": 4, "visible": True}])

    for qid in ("q1", "q2"):
        client.post("/api/answers/append", json={"userId": "u1", "questionnaireId": "qn1", "questionId": qid, "answer": "x"})

    partial = client.post("/api/questionnaire/qn1/validate", json={"userId": "u1"}).json()
    assert partial["incomplete"] is True
    assert len(partial["missingQuestionIds"]) == 1

    answered = client.get("/api/questionnaire/qn1/answered/u1").json()
    assert sorted(answered["answeredQuestionIds"]) == ["q1", "q2"]
    assert answered["completed"] is False

    synced = client.post("/api/questionnaire/qn1/sync-answers", json={
        "userId": "u1", "answers": [{"questionId": "q2", "answer": "x"}, {"questionId": "q3", "answer": "y"}],
    }).json()
    assert synced == {"ok": True, "synced": 2, "updated": 1, "created": 1}

    done = client.post("/api/questionnaire/qn1/validate", json={"userId": "u1"}).json()
    assert done["completed"] is True and done["pending"] == 4
    again = client.post("/api/questionnaire/qn1/validate", json={"userId": "u1"}).json()
    assert again["alreadyCompleted"] is True
    assert client.get("/api/user/u1/wallet").json()["pending"] == 4

    progress = client.get("/api/user/u1/questionnaires-progress").json()["progress"]["qn1"]
    assert progress["isCompleted"] is True
    assert progress["remaining"] == 0

    listed = client.get("/api/questionnaires/qn1/questions", params={"userId": "u1"}).json()
    assert [q["id"] for q in listed["questions"]] == ["q1", "q2", "q3"]
    assert listed["completed"] is True


def test_validate_unknown_questionnaire_is_404(client):
    res = client.post("/api/questionnaire/nope/validate", json={"userId": "u1"})
    assert res.status_code == 404
    assert "error" in res.json()


def test_random_then_earn(client):
    put_catalog(client, [{"id": f"q{i}", "title": str(i), "active": True} for i in range(4)])

    picked = client.get("/api/questions/random/u1", params={"n": 3}).json()
    assert len({q["id"] for q in picked["questions"]}) == 3
    assert picked["dailyLimit"] == 10

    earned = client.post("/api/earn/random", json={"userId": "u1"}).json()
    assert earned["ok"] is True
    assert earned["pending"] == pytest.approx(0.1)
    assert earned["dailyRemaining"] == 9

    skipped = client.post("/api/skip/random", json={"userId": "u1"}).json()
    assert skipped["pending"] == pytest.approx(0.1)
    assert skipped["count"] == 2


def test_random_for_unknown_user_is_404(client):
    assert client.get("/api/questions/random/ghost").status_code == 404


def test_withdraw_flow(client, backend):
    run(backend.store.write(CAGNOTTE_KEY, {"u1": {"pending": 40}}))
    rejected = client.post("/api/user/request-withdraw", json={"userId": "u1"})
    assert rejected.status_code == 400

    run(backend.store.write(CAGNOTTE_KEY, {"u1": {"pending": 60}}))
    accepted = client.post("/api/user/request-withdraw", json={"userId": "u1"}).json()
    assert accepted["pending"] == 0 and accepted["retrait"]["status"] == "PENDING"

    payments = client.get("/api/admin/payments").json()
    assert payments["total"] == 60
    payment_id = payments["payments"][0]["id"]

    cancelled = client.post(f"/api/admin/payments/{payment_id}/cancel").json()
    assert cancelled["pending"] == 60
    assert client.get("/api/admin/payments").json()["payments"] == []
    assert client.post(f"/api/admin/payments/{payment_id}/validate").status_code == 404


def test_put_db_invalidates_cached_views(client):
    put_catalog(client, [{"id": "q1", "title": "Un", "active": True}])
    assert [q["id"] for q in client.get("/api/db?scope=minimal").json()["questions"]] == ["q1"]

    saved = put_catalog(client, [{"id": "q1", "title": "Un", "active": True}, {"id": "q2", "title": "Deux", "active": True}])
    assert [q["id"] for q in saved["questions"]] == ["q1", "q2"]
    assert [q["id"] for q in client.get("/api/db?scope=minimal").json()["questions"]] == ["q1", "q2"]


def test_public_scope_hides_inactive_standalone_and_answers(client):
    put_catalog(client, [
        {"id": "on", "title": "a", "active": True},
        {"id": "off", "title": "b", "active": False},
        {"id": "linked", "title": "c", "questionnaire": "qn1"},
    ], [{"id": "qn1", "name": "S"}])
    client.post("/api/answers/append", json={"userId": "u1", "questionId": "on", "answer": "x"})

    view = client.get("/api/db?scope=public").json()
    assert sorted(q["id"] for q in view["questions"]) == ["linked", "on"]
    assert view["answers"] == []


def test_sensible_captcha_and_untagged(client, backend):
    captcha = client.post("/api/user/sensible", json={"userId": "u1", "isCaptcha": True, "questionId": "qc", "answer": "7"}).json()
    assert captcha == {"ok": True, "captcha": True}
    client.post("/api/user/sensible", json={"userId": "u1", "answer": "libre", "questionId": "q9", "questionTitle": "Libre"})

    user = run(backend.users.get_user("u1"))
    assert user["sensibleAnswersUntagged"] == [{"questionId": "q9", "questionTitle": "Libre", "answer": "libre"}]
    assert user["sensibleAnswersTagged"] == []
    assert set(run(backend.cooldowns.for_user("u1"))) == {"qc", "q9"}


def test_sensible_writes_profile(client, backend):
    res = client.post("/api/user/sensible", json={"userId": "u1", "tagName": "variable.user.metier", "answer": "Chimiste"})
    assert res.json() == {"ok": True, "updated": {"field": "metier"}}
    client.post("/api/user/sensible", json={"userId": "u1", "tagName": "Fun", "answer": "1"})
    client.post("/api/user/sensible", json={"userId": "u1", "tagName": "fun", "answer": "2"})

    user = run(backend.users.get_user("u1"))
    assert user["metier"] == "Chimiste"
    assert user["sensibleAnswersTagged"] == [{"tag": "Fun", "answer": "2"}]


def test_settings_round_trip(client):
    assert client.get("/api/admin/settings").json()["settings"]["randomQuestionsPerDay"] == 10
    updated = client.put("/api/admin/settings", json={"randomQuestionsPerDay": 999}).json()["settings"]
    assert updated["randomQuestionsPerDay"] == 100
    assert client.get("/api/admin/settings").json()["settings"]["randomQuestionsPerDay"] == 100


def test_delete_answer_and_user_cascade(client, backend):
    client.post("/api/answers/append", json={"userId": "u2", "questionId": "q1", "answer": "x"})
    answer_id = client.get("/api/db").json()["answers"][0]["id"]
    assert client.delete(f"/api/admin/answers/{answer_id}").json() == {"ok": True}
    assert client.delete(f"/api/admin/answers/{answer_id}").status_code == 404

    client.post("/api/answers/append", json={"userId": "u2", "questionId": "q2", "answer": "y"})
    client.post("/api/skip/random", json={"userId": "u2"})
    assert client.delete("/api/admin/users/u2").json() == {"ok": True}

    assert client.get("/api/db").json()["answers"] == []
    assert "u2" not in run(backend.cooldowns.load())
    assert client.get("/api/user/u2/wallet").status_code == 404
    assert client.delete("/api/admin/users/u2").status_code == 404
