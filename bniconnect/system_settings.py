# bniconnect/system_settings.py

import logging

from bniconnect.entities import SETTINGS_KEY

logger = logging.getLogger("bni_backend")

DEFAULT_SETTINGS = {
    "randomQuestionsPerDay": 10,
    "randomQuestionsPerWeek": 50,
    "minimumWithdrawalAmount": 50,      # dollars
    "earningsPerRandomQuestion": 0.10,  # dollars
    "earningsPerQuestionnaire": 1.00,   # dollars
    "maxWithdrawalsPerMonth": 5,
}

# field -> (parser, minimum, maximum)
_RULES = {
    "randomQuestionsPerDay": (int, 1, 100),
    "randomQuestionsPerWeek": (int, 1, 500),
    "minimumWithdrawalAmount": (float, 0.01, None),
    "earningsPerRandomQuestion": (float, 0.01, None),
    "earningsPerQuestionnaire": (float, 0.01, None),
    "maxWithdrawalsPerMonth": (int, 1, 50),
}


def validate_settings(raw: dict | None) -> dict:
    """
    Unparseable or zero values fall back to the default, then get clamped.
    """
    raw = raw if isinstance(raw, dict) else {}
    out = {}
    for field, (parser, lo, hi) in _RULES.items():
        try:
            value = parser(float(raw.get(field))) if parser is int else parser(raw.get(field))
        except (TypeError, ValueError):
            value = None
        if not value:
            value = DEFAULT_SETTINGS[field]
        value = max(lo, value)
        if hi is not None:
            value = min(hi, value)
        out[field] = value
    return out


class SettingsService:
    def __init__(self, store, cache) -> None:
        self.store = store
        self.cache = cache

    async def get_settings(self) -> dict:
        cached = self.cache.get("settings")
        if cached is not None:
            return dict(cached)
        stored = await self.store.read(SETTINGS_KEY, dict(DEFAULT_SETTINGS))
        settings = {**DEFAULT_SETTINGS, **(stored if isinstance(stored, dict) else {})}
        self.cache.set("settings", settings, tags=("settings",))
        return dict(settings)

    async def update_settings(self, raw: dict) -> dict:
        validated = validate_settings(raw)
        await self.store.write(SETTINGS_KEY, validated)
        self.cache.invalidate("settings")
        logger.info(f"[settings] updated: {validated}")
        return validated
