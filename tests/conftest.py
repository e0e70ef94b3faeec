"""
Shared fixtures: an in-memory stand-in for the MongoDB client/database used by
the allocator, and a stub email notifier.

The fake store runs each `with_transaction` callback under a lock and restores
a snapshot of all collections when the callback raises, which is the behaviour
the allocator relies on from a real MongoDB transaction.
"""
import copy
import os
import sys
import threading
import uuid
from collections import defaultdict

import pytest
from pymongo.errors import OperationFailure

# Ensure project root is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from allocator import CodeAllocator
from notifier import EmailError


class InsertResult:
    def __init__(self, inserted_id):
        self.inserted_id = inserted_id


class UpdateResult:
    def __init__(self, matched_count, modified_count):
        self.matched_count = matched_count
        self.modified_count = modified_count


def _matches(doc, filter_dict):
    return all(doc.get(k) == v for k, v in (filter_dict or {}).items())


class FakeCollection:
    def __init__(self, store, name):
        self.store = store
        self.name = name

    @property
    def docs(self):
        return self.store.data[self.name]

    def find(self, filter_dict=None, session=None):
        self.store.check("find", self.name)
        return [copy.deepcopy(d) for d in self.docs if _matches(d, filter_dict)]

    def find_one(self, filter_dict=None, session=None):
        self.store.check("find_one", self.name)
        for doc in self.docs:
            if _matches(doc, filter_dict):
                return copy.deepcopy(doc)
        return None

    def insert_one(self, doc, session=None):
        self.store.check("insert_one", self.name)
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", uuid.uuid4().hex)
        self.docs.append(doc)
        return InsertResult(doc["_id"])

    def update_one(self, filter_dict, update, session=None):
        self.store.check("update_one", self.name)
        for doc in self.docs:
            if _matches(doc, filter_dict):
                doc.update(update.get("$set", {}))
                return UpdateResult(1, 1)
        return UpdateResult(0, 0)


class FakeDatabase:
    name = "hellotabeeb_test"

    def __init__(self):
        self.data = defaultdict(list)
        self.failures = set()
        self.lock = threading.Lock()

    def __getitem__(self, name):
        return FakeCollection(self, name)

    def fail(self, operation, collection):
        self.failures.add((operation, collection))

    def check(self, operation, collection):
        if (operation, collection) in self.failures:
            raise OperationFailure(f"simulated {operation} failure on {collection}")

    def list_collection_names(self):
        return [name for name, docs in self.data.items() if docs]

    def seed_codes(self, *codes):
        for doc_id, code in codes:
            self.data["codes"].append({"_id": doc_id, "code": code, "isUsed": "false"})


class FakeSession:
    def __init__(self, db):
        self.db = db

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def with_transaction(self, callback):
        with self.db.lock:
            snapshot = copy.deepcopy(self.db.data)
            try:
                return callback(self)
            except Exception:
                self.db.data = snapshot
                raise


class FakeClient:
    def __init__(self, db):
        self.db = db

    def start_session(self):
        return FakeSession(self.db)


class StubNotifier:
    def __init__(self, error=None, message_id="<msg-1@brevo>"):
        self.error = error
        self.message_id = message_id
        self.sent = []

    async def send(self, booking, discount_code):
        self.sent.append((booking, discount_code))
        if self.error is not None:
            raise self.error
        return self.message_id


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def allocator(fake_db):
    return CodeAllocator(FakeClient(fake_db), fake_db)


@pytest.fixture
def notifier():
    return StubNotifier()


@pytest.fixture
def failing_notifier():
    return StubNotifier(error=EmailError("provider_error", "Failed to send email", 500))
