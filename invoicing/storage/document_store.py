from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel

from invoicing.storage.repo import JsonRepository

logger = logging.getLogger(__name__)

OWNER_KEY = "owner_id"
Snapshot = List[Dict[str, Any]]

_CLOSED = object()


class Subscription:
    """
    Flux de snapshots d'une collection pour un propriétaire.

        async with store.invoices.subscribe(owner_id) as snapshots:
            async for rows in snapshots:
                ...

    Le premier snapshot est l'état courant; chaque écriture dans la collection
    en pousse un nouveau. La sortie du bloc désabonne et termine l'itération.
    """

    def __init__(self, collection: "Collection", owner_id: str) -> None:
        self.collection = collection
        self.owner_id = owner_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "Subscription":
        self.collection._attach(self)
        self._push(self.collection.list(self.owner_id))
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.collection._detach(self)
        self._queue.put_nowait(_CLOSED)

    def _push(self, snapshot: Snapshot) -> None:
        if not self._closed:
            self._queue.put_nowait(snapshot)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Snapshot:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class Collection:
    """Vue d'une collection filtrée par propriétaire: un autre owner ne voit rien."""

    def __init__(self, name: str, repo: JsonRepository) -> None:
        self.name = name
        self.repo = repo
        self._subscribers: List[Subscription] = []

    # ---------- lecture ---------- #

    def get(self, obj_id: str, *, owner_id: str) -> Optional[Dict[str, Any]]:
        row = self.repo.get_by_id(obj_id)
        if row is None or row.get(OWNER_KEY) != owner_id:
            return None
        return row

    def list(self, owner_id: str) -> Snapshot:
        return self.repo.find(lambda r: r.get(OWNER_KEY) == owner_id)

    # ---------- écriture ---------- #

    def create(self, data: Union[BaseModel, Mapping[str, Any]], *, owner_id: str) -> str:
        record = JsonRepository._to_dict(data)
        if record.get(OWNER_KEY) not in (None, owner_id):
            raise PermissionError(f"cannot create {self.name} record for another owner")
        record[OWNER_KEY] = owner_id
        saved = self.repo.add(record)
        self._notify(owner_id)
        return str(saved[self.repo.key])

    def update(self, obj_id: str, partial: Union[BaseModel, Mapping[str, Any]], *, owner_id: str) -> Dict[str, Any]:
        patch = JsonRepository._to_dict(partial)
        if patch.get(OWNER_KEY) not in (None, owner_id):
            raise PermissionError(f"cannot move {self.name} record to another owner")
        patch[self.repo.key] = obj_id
        patch[OWNER_KEY] = owner_id
        with self.repo.lock:
            if self.get(obj_id, owner_id=owner_id) is None:
                raise KeyError(f"{self.name} {obj_id} not found")
            merged = self.repo.update(patch)
        self._notify(owner_id)
        return merged

    def delete(self, obj_id: str, *, owner_id: str) -> bool:
        with self.repo.lock:
            if self.get(obj_id, owner_id=owner_id) is None:
                return False
            deleted = self.repo.delete(obj_id)
        if deleted:
            self._notify(owner_id)
        return deleted

    # ---------- abonnements ---------- #

    def subscribe(self, owner_id: str) -> Subscription:
        return Subscription(self, owner_id)

    def _attach(self, sub: Subscription) -> None:
        self._subscribers.append(sub)

    def _detach(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)

    def _notify(self, owner_id: str) -> None:
        targets = [s for s in self._subscribers if s.owner_id == owner_id]
        if not targets:
            return
        snapshot = self.list(owner_id)
        for sub in targets:
            sub._push([dict(r) for r in snapshot])


class DocumentStore:
    COLLECTIONS = ("clients", "products", "invoices", "counters")

    def __init__(
        self,
        data_dir: Union[str, Path],
        *,
        backup_enabled: bool = True,
        backup_keep: int = 5,
    ) -> None:
        base = Path(data_dir)
        base.mkdir(parents=True, exist_ok=True)
        self.data_dir = base
        self._collections: Dict[str, Collection] = {}
        for name in self.COLLECTIONS:
            repo = JsonRepository(
                base / f"{name}.json",
                entity_name=name.rstrip("s"),
                key="id",
                backup_enabled=backup_enabled,
                backup_keep=backup_keep,
            )
            self._collections[name] = Collection(name, repo)

    @classmethod
    def from_settings(cls, settings: Any) -> "DocumentStore":
        return cls(
            settings.data_dir,
            backup_enabled=settings.backup.enabled,
            backup_keep=settings.backup.keep,
        )

    def collection(self, name: str) -> Collection:
        try:
            return self._collections[name]
        except KeyError:
            raise KeyError(f"unknown collection {name!r}") from None

    @property
    def clients(self) -> Collection:
        return self._collections["clients"]

    @property
    def products(self) -> Collection:
        return self._collections["products"]

    @property
    def invoices(self) -> Collection:
        return self._collections["invoices"]

    def next_sequence(self, owner_id: str, name: str, *, floor: int = 0) -> int:
        """Compteur monotone par propriétaire (jamais réutilisé, jamais sous `floor`)."""
        key = f"{owner_id}:{name}"
        with self._collections["counters"].repo.transaction() as rows:
            row = next((r for r in rows if r.get("id") == key), None)
            if row is None:
                row = {"id": key, OWNER_KEY: owner_id, "name": name, "value": 0}
                rows.append(row)
            row["value"] = max(int(row.get("value", 0)), floor) + 1
            return row["value"]
