from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from invoicing.errors import PersistenceError, ValidationError
from invoicing.models.client import Client
from invoicing.models.identity import Identity
from invoicing.storage.document_store import DocumentStore

logger = logging.getLogger(__name__)


def _hydrate(rows: Iterable[Dict[str, Any]]) -> List[Client]:
    out: List[Client] = []
    for d in rows:
        try:
            out.append(Client(**d))
        except PydanticValidationError:
            # On ignore les entrées invalides pour ne pas casser l'affichage
            logger.warning("Skipping invalid client record %s", d.get("id"))
            continue
    return out


class ClientService:
    def __init__(self, store: DocumentStore):
        self.collection = store.clients

    def list_clients(self, identity: Identity) -> List[Client]:
        return _hydrate(self.collection.list(identity.user_id))

    def get_client(self, identity: Identity, client_id: str) -> Optional[Client]:
        d = self.collection.get(client_id, owner_id=identity.user_id)
        if d is None:
            return None
        try:
            return Client(**d)
        except PydanticValidationError:
            return None

    def add_client(self, identity: Identity, data: Dict[str, Any]) -> Client:
        try:
            client = Client(**{**data, "owner_id": identity.user_id})
        except PydanticValidationError as e:
            raise ValidationError(str(e)) from e
        try:
            self.collection.create(client, owner_id=identity.user_id)
        except (OSError, ValueError) as e:
            raise PersistenceError("Could not save the client.") from e
        return client

    def update_client(self, identity: Identity, client: Client) -> Client:
        if client.owner_id != identity.user_id:
            raise ValidationError("client belongs to another user")
        try:
            self.collection.update(client.id, client, owner_id=identity.user_id)
        except (OSError, ValueError, KeyError) as e:
            raise PersistenceError("Could not update the client.") from e
        return client

    def delete_client(self, identity: Identity, client_id: str) -> bool:
        # les factures gardent leur snapshot: rien à propager
        try:
            return self.collection.delete(client_id, owner_id=identity.user_id)
        except OSError as e:
            raise PersistenceError("Failed to delete client.") from e

    @asynccontextmanager
    async def subscribe(self, identity: Identity) -> AsyncIterator[AsyncIterator[List[Client]]]:
        async with self.collection.subscribe(identity.user_id) as snapshots:
            async def clients() -> AsyncIterator[List[Client]]:
                async for rows in snapshots:
                    yield _hydrate(rows)
            yield clients()
