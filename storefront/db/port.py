from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, runtime_checkable

Document = Dict[str, Any]


@runtime_checkable
class RemoteCollectionPort(Protocol):
    """A user-scoped document collection in the hosted store.

    Documents are plain dicts; the ones handed back always carry their
    ``"id"``. ``fetch_all`` and ``subscribe`` return documents in no
    particular order, sorting is up to the caller.
    """

    async def fetch_all(self) -> List[Document]: ...

    async def add(self, data: Document, document_id: Optional[str] = None) -> str:
        """Create a document and return its id.

        With ``document_id`` the write is an upsert merged into any existing
        document under that id, so repeating it is harmless.
        """
        ...

    async def update(self, document_id: str, fields: Document) -> None: ...

    async def delete(self, document_id: str) -> None: ...

    def subscribe(self) -> AsyncIterator[List[Document]]:
        """Full list of documents on every change, until cancelled."""
        ...


PortFactory = Callable[[str], RemoteCollectionPort]
