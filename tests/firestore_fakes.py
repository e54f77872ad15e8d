"""Firestore をテストで再現するための簡易フェイク実装。"""

from __future__ import annotations

from typing import Any
import uuid

from google.api_core.exceptions import AlreadyExists
from google.cloud import firestore


class FakeDocumentSnapshot:
    def __init__(self, collection: str, doc_id: str, data: dict[str, Any] | None, client: "FakeFirestoreClient") -> None:
        self._collection = collection
        self.id = doc_id
        self._data = data
        self._client = client

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> dict[str, Any] | None:
        return None if self._data is None else dict(self._data)

    @property
    def reference(self) -> "FakeDocumentReference":
        return FakeDocumentReference(self._client, self._collection, self.id)


class FakeDocumentReference:
    def __init__(self, client: "FakeFirestoreClient", collection: str, doc_id: str) -> None:
        self._client = client
        self._collection = collection
        self.id = doc_id

    def set(self, data: dict[str, Any], merge: bool = False) -> None:
        bucket = self._client._data.setdefault(self._collection, {})
        if merge and self.id in bucket:
            bucket[self.id].update(data)
        else:
            bucket[self.id] = dict(data)

    def create(self, data: dict[str, Any]) -> None:
        bucket = self._client._data.setdefault(self._collection, {})
        if self.id in bucket:
            raise AlreadyExists(f"document {self._collection}/{self.id} already exists")
        bucket[self.id] = dict(data)

    def get(self, transaction: "FakeTransaction" | None = None) -> FakeDocumentSnapshot:
        bucket = self._client._data.setdefault(self._collection, {})
        payload = dict(bucket[self.id]) if self.id in bucket else None
        return FakeDocumentSnapshot(self._collection, self.id, payload, self._client)

    def delete(self) -> None:
        bucket = self._client._data.setdefault(self._collection, {})
        bucket.pop(self.id, None)


class FakeCollectionReference:
    def __init__(self, client: "FakeFirestoreClient", name: str) -> None:
        self._client = client
        self._name = name

    def document(self, doc_id: str) -> FakeDocumentReference:
        return FakeDocumentReference(self._client, self._name, doc_id)

    def _all_snapshots(self) -> list[FakeDocumentSnapshot]:
        bucket = self._client._data.setdefault(self._name, {})
        return [
            FakeDocumentSnapshot(self._name, doc_id, dict(data), self._client)
            for doc_id, data in bucket.items()
        ]

    def stream(self):  # pragma: no cover - simple iterator
        docs = self._all_snapshots()
        self._client._record_query(self._name, [], len(docs))
        for snapshot in docs:
            yield snapshot

    def order_by(self, field_path: str, direction=firestore.Query.ASCENDING):
        return FakeQuery(self).order_by(field_path, direction)

    def where(self, field_path: str, op_string: str, value: Any):
        return FakeQuery(self).where(field_path, op_string, value)


class FakeQuery:
    def __init__(
        self,
        collection: FakeCollectionReference,
        *,
        orderings: list[tuple[str, bool]] | None = None,
        filters: list[tuple[str, str, Any]] | None = None,
        limit: int | None = None,
    ) -> None:
        self._collection = collection
        self._orderings: list[tuple[str, bool]] = list(orderings or [])
        self._filters: list[tuple[str, str, Any]] = list(filters or [])
        self._limit: int | None = limit

    def _clone(self, **kwargs: Any) -> "FakeQuery":
        params = {
            "orderings": kwargs.pop("orderings", self._orderings),
            "filters": kwargs.pop("filters", self._filters),
            "limit": kwargs.pop("limit", self._limit),
        }
        return FakeQuery(self._collection, **params)

    def order_by(self, field_path: str, direction=firestore.Query.ASCENDING) -> "FakeQuery":
        updated = list(self._orderings)
        updated.append((field_path, direction == firestore.Query.DESCENDING))
        return self._clone(orderings=updated)

    def where(self, field_path: str, op_string: str, value: Any) -> "FakeQuery":
        updated = list(self._filters)
        updated.append((field_path, op_string, value))
        return self._clone(filters=updated)

    def limit(self, value: int) -> "FakeQuery":
        return self._clone(limit=max(0, int(value)))

    def _matching_snapshots(self) -> list[FakeDocumentSnapshot]:
        docs = self._collection._all_snapshots()
        for field_path, op_string, expected in self._filters:
            docs = [
                doc
                for doc in docs
                if self._matches_filter(doc, field_path, op_string, expected)
            ]
        for field_path, descending in reversed(self._orderings):
            docs.sort(
                key=lambda snap, fp=field_path: self._order_value(snap, fp),
                reverse=descending,
            )
        if self._limit is not None:
            docs = docs[: self._limit]
        return docs

    def stream(self):  # pragma: no cover - passthrough iterator
        results = self._matching_snapshots()
        self._collection._client._record_query(
            self._collection._name, self._filters, len(results), self._limit
        )
        for snapshot in results:
            yield snapshot

    def _matches_filter(
        self,
        snapshot: FakeDocumentSnapshot,
        field_path: str,
        op_string: str,
        expected: Any,
    ) -> bool:
        data = snapshot.to_dict() or {}
        actual = data.get(field_path)
        if op_string == "==":
            return actual == expected
        if actual is None:
            return False
        if op_string == ">=":
            return actual >= expected
        if op_string == "<=":
            return actual <= expected
        if op_string == ">":
            return actual > expected
        if op_string == "<":
            return actual < expected
        raise NotImplementedError(f"unsupported operator: {op_string}")

    def _order_value(self, snapshot: FakeDocumentSnapshot, field_path: str) -> Any:
        data = snapshot.to_dict() or {}
        if field_path == "__name__":
            return snapshot.id
        value = data.get(field_path)
        if isinstance(value, (int, float)):
            return value
        return str(value or "")


_TRANSACTION_NOT_IN_PROGRESS = "Transaction not in progress, cannot be used in API requests."


class FakeTransaction:
    def __init__(self, client: "FakeFirestoreClient") -> None:
        self._client = client
        self._in_progress = False
        self._id: str | None = None
        self._writes: list[tuple[FakeDocumentReference, dict[str, Any]]] = []
        self.committed = False
        self.rolled_back = False

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def id(self) -> str | None:
        return self._id

    def _clean_up(self) -> None:
        self._in_progress = False
        self._id = None
        self._writes = []

    def _begin(self) -> None:
        if self._in_progress:
            raise ValueError("Transaction already in progress.")
        self._in_progress = True
        self._id = f"fake-txn-{uuid.uuid4().hex}"

    def _rollback(self) -> None:
        if not self._in_progress:
            raise ValueError(_TRANSACTION_NOT_IN_PROGRESS)
        self.rolled_back = True
        self._clean_up()

    def _commit(self) -> None:
        if not self._in_progress:
            raise ValueError(_TRANSACTION_NOT_IN_PROGRESS)
        if self._client.fail_next_commit is not None:
            exc, self._client.fail_next_commit = self._client.fail_next_commit, None
            raise exc
        # 書き込みはコミット時にまとめて反映する（途中で失敗したら何も残らない）
        for doc_ref, data in self._writes:
            doc_ref.set(data)
        self.committed = True
        self._clean_up()

    def _ensure_active(self) -> None:
        if not self._in_progress:
            raise ValueError(_TRANSACTION_NOT_IN_PROGRESS)

    def get(self, doc_ref: FakeDocumentReference) -> FakeDocumentSnapshot:
        self._ensure_active()
        return doc_ref.get()

    def set(self, doc_ref: FakeDocumentReference, data: dict[str, Any], merge: bool = False) -> None:
        self._ensure_active()
        self._writes.append((doc_ref, dict(data)))


class FakeWriteBatch:
    """Firestore の WriteBatch API を模した簡易フェイク。"""

    def __init__(self, client: "FakeFirestoreClient") -> None:
        self._client = client
        self._operations: list[tuple[str, Any]] = []

    def delete(self, doc_ref: FakeDocumentReference) -> None:
        self._operations.append(("delete", doc_ref))

    def set(self, doc_ref: FakeDocumentReference, data: dict[str, Any]) -> None:
        self._operations.append(("set", (doc_ref, data)))

    def commit(self) -> None:
        self._client.batch_commits += 1
        for action, payload in list(self._operations):
            if action == "delete":
                ref: FakeDocumentReference = payload  # type: ignore[assignment]
                ref.delete()
            elif action == "set":
                ref, data = payload  # type: ignore[misc]
                ref.set(data)


def ensure_firestore_test_env(monkeypatch) -> None:
    """テスト用に Firestore 接続先をエミュレータ/フェイクへ固定する環境変数を設定する。"""

    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.setenv("STORE_BACKEND", "firestore")
    monkeypatch.setenv("FIRESTORE_EMULATOR_HOST", "localhost:8080")
    monkeypatch.setenv("FIRESTORE_PROJECT_ID", "test-project")


def use_fake_firestore_client(monkeypatch, client: "FakeFirestoreClient | None" = None) -> "FakeFirestoreClient":
    """google.cloud.firestore.Client をフェイクに差し替え、同一インスタンスを返す。"""

    instance = client or FakeFirestoreClient()
    monkeypatch.setattr(firestore, "Client", lambda *args, **kwargs: instance)
    return instance


class FakeFirestoreClient:
    """google.cloud.firestore.Client 互換の最小フェイク。

    - collection/transaction/batch/get_all だけを実装する。
    - _data は collection ごとに {doc_id: payload} を保持し、テスト毎に新規インスタンスで分離する。
    - fail_next_commit に例外を入れると、次のトランザクションコミットでそれを送出する。
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._query_log: list[dict[str, Any]] = []
        self.fail_next_commit: Exception | None = None
        self.batch_commits = 0
        self.transactions: list[FakeTransaction] = []

    def collection(self, name: str) -> FakeCollectionReference:
        return FakeCollectionReference(self, name)

    def transaction(self) -> FakeTransaction:
        transaction = FakeTransaction(self)
        self.transactions.append(transaction)
        return transaction

    def batch(self) -> FakeWriteBatch:
        return FakeWriteBatch(self)

    def get_all(self, references):
        for ref in references:
            yield ref.get()

    def _record_query(
        self,
        collection: str,
        filters: list[tuple[str, str, Any]],
        size: int,
        limit: int | None = None,
    ) -> None:  # pragma: no cover - bookkeeping helper
        self._query_log.append(
            {"collection": collection, "filters": list(filters), "size": size, "limit": limit}
        )

    @property
    def query_log(self) -> list[dict[str, Any]]:
        return list(self._query_log)
