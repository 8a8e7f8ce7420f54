import threading

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import OperationFailure

import database
import main


class BufferedTransaction:
    """
    Transaction over a mongomock database.

    Reads see committed state; writes are buffered and only applied by
    commit(), so an exception raised by the callback leaves nothing behind.
    """

    def __init__(self, db):
        self.db = db
        self.inserts = []
        self.updates = []

    def get(self, collection_name, doc_id):
        oid = database.to_object_id(doc_id)
        if oid is None:
            return None
        return self.db[collection_name].find_one({"_id": oid})

    def set(self, collection_name, data):
        doc = dict(data)
        doc["_id"] = ObjectId()
        self.inserts.append((collection_name, doc))
        return str(doc["_id"])

    def update(self, collection_name, doc_id, data, expect=None):
        self.updates.append((collection_name, doc_id, data, expect or {}))

    def commit(self):
        for collection_name, doc_id, _, expect in self.updates:
            filt = {"_id": ObjectId(doc_id), **expect}
            if self.db[collection_name].count_documents(filt) == 0:
                raise database.WriteConflict(f"{collection_name}/{doc_id} changed during transaction")
        for collection_name, doc in self.inserts:
            self.db[collection_name].insert_one(doc)
        for collection_name, doc_id, data, _ in self.updates:
            self.db[collection_name].update_one({"_id": ObjectId(doc_id)}, {"$set": data})


class LockedTransactionRunner:
    """Serializes transactions with one lock, the way a store serializes conflicting writers."""

    def __init__(self, db):
        self.db = db
        self.lock = threading.Lock()
        self.attempts = 0
        self.failures_left = 0

    def __call__(self, callback):
        with self.lock:
            self.attempts += 1
            tx = BufferedTransaction(self.db)
            result = callback(tx)
            if self.failures_left:
                self.failures_left -= 1
                raise OperationFailure("WriteConflict", code=112)
            tx.commit()
            return result


@pytest.fixture
def mock_db(monkeypatch):
    db = mongomock.MongoClient()["quickgrocery_test"]
    monkeypatch.setattr(database, "db", db)
    monkeypatch.setattr(main, "db", db)
    return db


@pytest.fixture
def runner(mock_db, monkeypatch):
    txn = LockedTransactionRunner(mock_db)
    monkeypatch.setattr(database, "run_transaction", txn)
    return txn


@pytest.fixture
def make_product(mock_db):
    def _make(name="Milk", price=30, stock_count=5, category="Dairy, Bread and Eggs"):
        return database.create_document(
            "product",
            {
                "name": name,
                "price": price,
                "category": category,
                "size": None,
                "stock_count": stock_count,
                "stock": stock_count > 0,
                "image": None,
            },
        )
    return _make


@pytest.fixture
def product_doc(mock_db):
    def _get(product_id):
        return mock_db["product"].find_one({"_id": ObjectId(product_id)})
    return _get


@pytest.fixture
def client(runner):
    return TestClient(main.app)


@pytest.fixture
def make_user(mock_db):
    def _make(role="user", email="asha@example.com", name="Asha", phone="9876543210", address="12 MG Road"):
        user_id = database.create_document(
            "user",
            {
                "name": name,
                "email": email,
                "phone": phone,
                "address": address,
                "password_hash": main.hash_password("secret123"),
                "role": role,
            },
        )
        token = main.create_token({"id": user_id, "email": email, "role": role})
        return {"id": user_id, "headers": {"Authorization": f"Bearer {token}"}}
    return _make


@pytest.fixture
def customer(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role="admin", email="admin@example.com", name="Admin")
