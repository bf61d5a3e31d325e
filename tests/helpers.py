import asyncio

from bniconnect.document_store import DocumentStore


class MemoryDocumentStore(DocumentStore):
    """In-process document store. `yield_on_io` forces a task switch on every call."""

    name = "memory"

    def __init__(self, yield_on_io: bool = True) -> None:
        super().__init__()
        self.docs: dict[str, str] = {}
        self.yield_on_io = yield_on_io
        self.writes: list[str] = []
        # keys whose next write raises once
        self.failing: set[str] = set()

    async def _get(self, key):
        if self.yield_on_io:
            await asyncio.sleep(0)
        return self.docs.get(key)

    async def _set(self, key, text):
        if self.yield_on_io:
            await asyncio.sleep(0)
        if key in self.failing:
            self.failing.discard(key)
            raise OSError(f"disk full: {key}")
        self.docs[key] = text
        self.writes.append(key)


def run(coro):
    return asyncio.run(coro)


def make_user(user_id="u1", **fields):
    return {"id": user_id, "prenom": "Marie", "nom": "Curie", **fields}
