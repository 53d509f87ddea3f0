"""Pytest configuration with basic asyncio support and in-memory MongoDB fakes."""

import asyncio
from types import SimpleNamespace

import pytest
from pymongo.errors import CollectionInvalid


class AsyncCursor:
    """Async iterator over documents, optionally failing after ``fail_after`` items."""

    def __init__(self, docs, fail_after: int | None = None, error: Exception | None = None):
        self._docs = list(docs)
        self._index = 0
        self._fail_after = fail_after
        self._error = error

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._fail_after is not None and self._index >= self._fail_after:
            raise self._error
        if self._index >= len(self._docs):
            raise StopAsyncIteration
        value = self._docs[self._index]
        self._index += 1
        return value


class FakeCollection:
    def __init__(self, name: str, docs=None):
        self.name = name
        self.documents: list[dict] = [dict(doc) for doc in docs or []]
        self.cursor_error: Exception | None = None
        self.fail_after: int | None = None
        self.bulk_calls: list[tuple[int, bool]] = []

    def find(self, *_args, **_kwargs):
        docs = [dict(doc) for doc in self.documents]
        if self.cursor_error is not None:
            return AsyncCursor(docs, fail_after=self.fail_after or 0, error=self.cursor_error)
        return AsyncCursor(docs)

    async def bulk_write(self, requests, ordered: bool = True):
        self.bulk_calls.append((len(requests), ordered))
        for request in requests:
            self.documents.append(dict(request._doc))
        return SimpleNamespace(inserted_count=len(requests))


class FakeDatabase:
    def __init__(self, name: str = "shop", collections: dict[str, list[dict]] | None = None):
        self.name = name
        self.collections: dict[str, FakeCollection] = {
            coll_name: FakeCollection(coll_name, docs)
            for coll_name, docs in (collections or {}).items()
        }
        self.dropped: list[str] = []
        self.drop_errors: dict[str, Exception] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection(name))

    async def list_collection_names(self):
        return list(self.collections)

    async def create_collection(self, name: str) -> FakeCollection:
        if name in self.collections:
            raise CollectionInvalid(f"collection {name} already exists")
        collection = FakeCollection(name)
        self.collections[name] = collection
        return collection

    async def drop_collection(self, name: str) -> None:
        await asyncio.sleep(0)
        if name in self.drop_errors:
            raise self.drop_errors[name]
        self.collections.pop(name, None)
        self.dropped.append(name)

    def counts(self) -> dict[str, int]:
        return {name: len(coll.documents) for name, coll in self.collections.items()}


class RecordingProgress:
    """Progress stub remembering every label it was started with."""

    instances: list["RecordingProgress"] = []

    def __init__(self, label: str):
        self.label = label
        self.started = False
        self.stopped = False
        RecordingProgress.instances.append(self)

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True


@pytest.fixture
def fake_db():
    def _factory(name: str = "shop", collections: dict[str, list[dict]] | None = None) -> FakeDatabase:
        return FakeDatabase(name, collections)

    return _factory


@pytest.fixture
def progress():
    RecordingProgress.instances.clear()
    yield RecordingProgress
    RecordingProgress.instances.clear()


def pytest_configure(config):
    """Register the ``asyncio`` marker for asynchronous tests."""
    config.addinivalue_line(
        "markers", "asyncio: mark async test to run in event loop"
    )


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem):
    """Run functions marked with ``asyncio`` in a new event loop."""
    if pyfuncitem.get_closest_marker("asyncio"):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            funcargs = {
                name: pyfuncitem.funcargs[name]
                for name in pyfuncitem._fixtureinfo.argnames
            }
            loop.run_until_complete(pyfuncitem.obj(**funcargs))
        finally:
            loop.close()
            asyncio.set_event_loop(None)
        return True
