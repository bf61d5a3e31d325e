# bniconnect/entities.py
#
# Records are plain JSON dicts as stored in the documents below; the
# normalize_* functions fill defaults and coerce legacy field names.

from datetime import datetime
from typing import TypeAlias

from bniconnect.base_utils import as_array, digits_only, new_id, now_iso, parse_date_only

Question: TypeAlias = dict
Questionnaire: TypeAlias = dict
Tag: TypeAlias = dict
User: TypeAlias = dict

# --- Document keys ---
QUESTIONS_KEY = "question.json"
QUESTIONNAIRES_KEY = "questionnaire.json"
TAGS_KEY = "tag.json"
RESPONSES_KEY = "reponses.json"
USERS_KEY = "utilisateur.json"
CAGNOTTE_KEY = "cagnotte.json"
PAYMENTS_KEY = "argentadmin.json"
COOLDOWNS_KEY = "questionCooldowns.json"
SETTINGS_KEY = "settings.json"

QUESTION_TYPES = {"FREE_TEXT", "QCM", "DROPDOWN", "CHECKBOX", "SLIDER", "PHOTO"}
CHOICE_TYPES = {"QCM", "DROPDOWN", "CHECKBOX"}

RETRAIT_IDLE = "IDLE"
RETRAIT_PENDING = "PENDING"

SEED_TAGS = [
    {"id": "t_fun", "name": "Fun"},
    {"id": "t_state", "name": "État"},
    {"id": "t_newyear", "name": "Nouvel an"},
]


def _first(d: dict, *keys, default=None):
    for k in keys:
        if d.get(k) is not None:
            return d[k]
    return default


def normalize_question(q: dict) -> Question:
    qtype = str(q.get("type") or "").strip().upper()
    if qtype not in QUESTION_TYPES:
        qtype = "FREE_TEXT"

    checkbox_mode = None
    if qtype == "CHECKBOX":
        raw = str(_first(q, "checkboxMode", "checkboxmode", default="")).strip().upper()
        if raw in ("SINGLE", "UNIQUE"):
            checkbox_mode = "SINGLE"
        elif raw in ("MULTI", "MULTIPLE"):
            checkbox_mode = "MULTI"
        elif q.get("checkboxMultiple") is False or q.get("allowMultiple") is False:
            checkbox_mode = "SINGLE"
        else:
            checkbox_mode = "MULTI"

    slider_min = slider_max = None
    if qtype == "SLIDER":
        try:
            a = float(_first(q, "sliderMin", "slidermin", "start", default=0))
            b = float(_first(q, "sliderMax", "slidermax", "end", default=10))
            slider_min, slider_max = min(a, b), max(a, b)
        except (TypeError, ValueError):
            slider_min, slider_max = 0, 10

    questionnaire = q.get("questionnaire") or None
    priority = bool(_first(q, "priority", "prioritaire", default=False)) and not questionnaire
    priority_until = None if questionnaire else _first(
        q, "priorityUntil", "prioritaireUntil", "priorityEndDate", "prioritaireFin"
    )

    choices = []
    if qtype in CHOICE_TYPES:
        for idx, c in enumerate(as_array(q.get("choices"))):
            c = c if isinstance(c, dict) else {"text": str(c)}
            choices.append({
                "id": c.get("id") or f"c_{idx + 1}",
                "text": c.get("text") or "",
                "isCorrect": bool(c.get("isCorrect")),
            })

    return {
        "id": str(q.get("id") or new_id("q")),
        "title": str(q.get("title") or "").strip() or "Sans titre",
        "type": qtype,
        "correctAnswer": q.get("correctAnswer"),
        "digitsOnly": bool(_first(q, "digitsOnly", "freeTextDigitsOnly", "onlyDigits", default=False))
        if qtype == "FREE_TEXT" else False,
        "imageUrl": q.get("imageUrl"),
        "importance": "CAPTCHA" if q.get("importance") == "CAPTCHA" else "SENSIBLE",
        "tagId": q.get("tagId") or None,
        "priority": priority,
        "priorityUntil": priority_until,
        "active": bool(q.get("active")),
        "questionnaire": str(questionnaire) if questionnaire else None,
        "forcedInactiveByQuestionnaire": bool(q.get("forcedInactiveByQuestionnaire")),
        "createdAt": q.get("createdAt") or now_iso(),
        "updatedAt": q.get("updatedAt") or now_iso(),
        "checkboxMode": checkbox_mode,
        "sliderMin": slider_min,
        "sliderMax": slider_max,
        "choices": choices,
    }


def normalize_questionnaire(qn: dict) -> Questionnaire:
    order = as_array(_first(qn, "questionorder", "questionOrder", "questionIds", default=[]))
    unrelease = bool(_first(qn, "unrelease", "unreleased", default=False)) or (
        str(qn.get("status") or "").lower() == "unrelease"
    )
    try:
        reward = max(0.0, float(qn.get("reward") or 0))
    except (TypeError, ValueError):
        reward = 0.0
    return {
        "id": str(qn.get("id") or new_id("qn")),
        "name": str(qn.get("name") or "").strip() or "Sans nom",
        "reward": reward,
        "visible": bool(qn.get("visible")),
        "unrelease": unrelease,
        "endDate": qn.get("endDate"),
        "isPrivate": bool(qn.get("isPrivate")),
        "code": qn.get("code") or "",
        "questionIds": [str(x) for x in as_array(qn.get("questionIds"))],
        "questionorder": [str(x) for x in order],
        "createdAt": qn.get("createdAt") or now_iso(),
        "updatedAt": qn.get("updatedAt") or now_iso(),
    }


def normalize_tag(t: dict) -> Tag:
    return {
        "id": str(t.get("id") or new_id("t")),
        "name": str(t.get("name") or "").strip() or "Sans nom",
        "createdAt": t.get("createdAt") or now_iso(),
    }


def normalize_user(u: dict) -> User:
    prenom = str(_first(u, "prenom", "firstName", default="")).strip()
    nom = str(_first(u, "nom", "lastName", default="")).strip()
    full_name = str(u.get("fullName") or f"{prenom} {nom}").strip() or "Utilisateur"
    retrait = u.get("retrait") if isinstance(u.get("retrait"), dict) else None
    try:
        gagne = float(u.get("gagneSurBNI") or 0)
    except (TypeError, ValueError):
        gagne = 0.0
    return {
        "id": str(u.get("id") or new_id("u")),
        "prenom": prenom,
        "nom": nom,
        "fullName": full_name,
        "compteBancaire": digits_only(_first(u, "compteBancaire", "bankAccount", default="")),
        "dateNaissance": str(_first(u, "dateNaissance", "birthDate", default="")),
        "telephone": digits_only(_first(u, "telephone", "phone", default="")),
        "motDePasse": str(_first(u, "motDePasse", "password", default="")),
        "photoProfil": _first(u, "photoProfil", "avatarUrl", default="") or "",
        "numeroCitoyen": digits_only(_first(u, "numeroCitoyen", "citizenNumber", default="")),
        "sexe": u.get("sexe") or "",
        "couleurPeau": u.get("couleurPeau") or "",
        "couleurCheveux": u.get("couleurCheveux") or "",
        "longueurCheveux": u.get("longueurCheveux") or "",
        "styleVestimentaire": u.get("styleVestimentaire") or "",
        "metier": u.get("metier") or "",
        "gagneSurBNI": gagne,
        "is_admin": bool(u.get("is_admin")),
        "token": u.get("token") or "",
        "retrait": retrait or idle_retrait(),
        "sensibleAnswersTagged": u.get("sensibleAnswersTagged") if isinstance(u.get("sensibleAnswersTagged"), list) else [],
        "sensibleAnswersUntagged": u.get("sensibleAnswersUntagged") if isinstance(u.get("sensibleAnswersUntagged"), list) else [],
        "createdAt": u.get("createdAt") or now_iso(),
        "updatedAt": u.get("updatedAt") or now_iso(),
    }


def idle_retrait() -> dict:
    return {"status": RETRAIT_IDLE, "amount": 0, "requestedAt": None}


# -----------------------
# Derived status
# -----------------------

def is_expired(end_date, now: datetime) -> bool:
    dt = parse_date_only(end_date)
    if dt is None:
        return False
    return dt <= now


def is_questionnaire_active(qn: dict, now: datetime) -> bool:
    """Visible to end users: visible, released and not past its end date."""
    if not qn or qn.get("unrelease"):
        return False
    return bool(qn.get("visible")) and not is_expired(qn.get("endDate"), now)


def is_priority_active(q: dict, now: datetime) -> bool:
    if not q or not q.get("priority"):
        return False
    until = parse_date_only(q.get("priorityUntil"))
    if until is None:
        return False
    end_of_day = until.replace(hour=23, minute=59, second=59, microsecond=999000)
    return now <= end_of_day
