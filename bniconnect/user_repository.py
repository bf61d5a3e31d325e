# bniconnect/user_repository.py

import asyncio

from bniconnect.base_utils import BaseUtils, as_array
from bniconnect.entities import USERS_KEY, normalize_user
from bniconnect.errors import NotFoundError

DEFAULT_USER_NAME = "Utilisateur"


class UserRepository(BaseUtils):
    def __init__(self, store) -> None:
        self.store = store
        # guards read-modify-write of the users document
        self.lock = asyncio.Lock()

    async def read_users(self) -> list[dict]:
        # Normalized in memory only. Writing a possibly stale read back to an
        # eventually consistent store could clobber a fresher update.
        return [normalize_user(u) for u in as_array(await self.store.read(USERS_KEY, [])) if isinstance(u, dict)]

    async def write_users(self, users: list[dict]) -> list[dict]:
        norm = [normalize_user(u) for u in users]
        await self.store.write(USERS_KEY, norm)
        return norm

    async def get_user(self, user_id: str, users: list[dict] | None = None) -> dict:
        users = users if users is not None else await self.read_users()
        for u in users:
            if u["id"] == str(user_id):
                return u
        raise NotFoundError("Utilisateur introuvable")

    async def resolve_user_name(self, user_id: str, given: str | None) -> str:
        """Stable human name for admin views: the given one unless blank or the placeholder."""
        name = str(given or "").strip()
        if name and name != DEFAULT_USER_NAME:
            return name
        for u in await self.read_users():
            if u["id"] == str(user_id):
                name = u.get("fullName") or f"{u.get('prenom', '')} {u.get('nom', '')}".strip()
                break
        return name or DEFAULT_USER_NAME
