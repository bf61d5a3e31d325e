# bniconnect/user_variable_tags.py
#
# Hardcoded "variable.user" pseudo-tags. They are listed like regular tags but
# are never persisted in tag.json; answering a question carrying one of them
# writes the answer into the matching user profile field.

USER_VARIABLE_PREFIX = "variable.user."

USER_VARIABLE_TAGS = [
    {"id": "vu_dateNaissance", "name": "variable.user.dateNaissance", "field": "dateNaissance"},
    {"id": "vu_telephone", "name": "variable.user.telephone", "field": "telephone"},
    {"id": "vu_photoProfil", "name": "variable.user.photoProfil", "field": "photoProfil"},
    {"id": "vu_numeroCitoyen", "name": "variable.user.numeroCitoyen", "field": "numeroCitoyen"},
    {"id": "vu_sexe", "name": "variable.user.sexe", "field": "sexe"},
    {"id": "vu_couleurPeau", "name": "variable.user.couleurPeau", "field": "couleurPeau"},
    {"id": "vu_couleurCheveux", "name": "variable.user.couleurCheveux", "field": "couleurCheveux"},
    {"id": "vu_longueurCheveux", "name": "variable.user.longueurCheveux", "field": "longueurCheveux"},
    {"id": "vu_styleVestimentaire", "name": "variable.user.styleVestimentaire", "field": "styleVestimentaire"},
    {"id": "vu_metier", "name": "variable.user.metier", "field": "metier"},
]

USER_VARIABLE_TAG_IDS = {t["id"] for t in USER_VARIABLE_TAGS}
USER_VARIABLE_FIELDS = {t["field"] for t in USER_VARIABLE_TAGS}

_BY_ID = {t["id"]: t for t in USER_VARIABLE_TAGS}
_BY_NAME_LOWER = {t["name"].lower(): t for t in USER_VARIABLE_TAGS}


def is_user_variable_tag(tag: dict | None) -> bool:
    if not tag:
        return False
    if str(tag.get("id") or "") in USER_VARIABLE_TAG_IDS:
        return True
    return str(tag.get("name") or "").strip().lower().startswith(USER_VARIABLE_PREFIX)


def field_for_tag_id(tag_id) -> str | None:
    t = _BY_ID.get(str(tag_id or ""))
    return t["field"] if t else None


def field_for_tag_name(tag_name) -> str | None:
    name = str(tag_name or "").strip()
    if not name:
        return None
    direct = _BY_NAME_LOWER.get(name.lower())
    if direct:
        return direct["field"]
    if not name.lower().startswith(USER_VARIABLE_PREFIX):
        return None
    field = name[len(USER_VARIABLE_PREFIX):].strip()
    return field if field in USER_VARIABLE_FIELDS else None
