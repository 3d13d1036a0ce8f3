import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Generic, Iterator, List, Optional, Tuple, Type, TypeVar
from uuid import uuid4

from pydantic import BaseModel

from groomquote.config import settings
from groomquote.errors import MarketConflictError, MarketNotFoundError, MarketStateError
from groomquote.models import (
    ChatMessage,
    ChatRoom,
    Payment,
    QuoteItem,
    QuoteRequest,
    QuoteResponse,
    Review,
    UserProfile,
)

ModelT = TypeVar("ModelT", bound=BaseModel)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


def _safe_json_list(raw_value: Any) -> List[Any]:
    if raw_value in (None, ""):
        return []
    try:
        parsed = json.loads(raw_value)
    except (TypeError, json.JSONDecodeError):
        return []
    return parsed if isinstance(parsed, list) else []


class _Table(Generic[ModelT]):
    """Row gateway for one entity table, bound to an open transaction."""

    table: str = ""
    label: str = "Record"
    model: Type[ModelT]
    columns: Tuple[str, ...] = ()
    json_columns: Tuple[str, ...] = ()
    bool_columns: Tuple[str, ...] = ()

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def _from_row(self, row: sqlite3.Row) -> ModelT:
        data: Dict[str, Any] = {}
        for column in self.columns:
            value = row[column]
            if column in self.json_columns:
                value = _safe_json_list(value)
            elif column in self.bool_columns:
                value = bool(value)
            data[column] = value
        return self.model(**data)

    def _to_params(self, entity: ModelT) -> List[Any]:
        params: List[Any] = []
        for column in self.columns:
            value = getattr(entity, column)
            if column in self.json_columns:
                value = json.dumps(list(value))
            elif column in self.bool_columns:
                value = 1 if value else 0
            params.append(value)
        return params

    def find(self, entity_id: str) -> Optional[ModelT]:
        row = self._conn.execute(f"SELECT * FROM {self.table} WHERE id = ?", (entity_id,)).fetchone()
        return self._from_row(row) if row else None

    def get(self, entity_id: str) -> ModelT:
        entity = self.find(entity_id)
        if entity is None:
            raise MarketNotFoundError(f"{self.label} not found")
        return entity

    def query(self, order_by: str = "created_at ASC, rowid ASC", **filters: Any) -> List[ModelT]:
        clauses: List[str] = []
        params: List[Any] = []
        for column, value in filters.items():
            if column not in self.columns:
                raise ValueError(f"Unknown {self.table} column: {column}")
            if isinstance(value, (list, tuple, set, frozenset)):
                values = list(value)
                if not values:
                    return []
                clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
                params.extend(values)
            else:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(f"SELECT * FROM {self.table}{where} ORDER BY {order_by}", params).fetchall()
        return [self._from_row(row) for row in rows]

    def first(self, **filters: Any) -> Optional[ModelT]:
        rows = self.query(**filters)
        return rows[0] if rows else None

    def save(self, entity: ModelT) -> ModelT:
        placeholders = ", ".join("?" for _ in self.columns)
        assignments = ", ".join(f"{column} = excluded.{column}" for column in self.columns if column != "id")
        try:
            self._conn.execute(
                f"""
                INSERT INTO {self.table} ({', '.join(self.columns)})
                VALUES ({placeholders})
                ON CONFLICT(id) DO UPDATE SET {assignments}
                """,
                self._to_params(entity),
            )
        except sqlite3.IntegrityError as exc:
            raise MarketConflictError(f"{self.label} conflicts with an existing record") from exc
        return entity

    def delete(self, entity_id: str) -> None:
        self._conn.execute(f"DELETE FROM {self.table} WHERE id = ?", (entity_id,))


class UserTable(_Table[UserProfile]):
    table = "users"
    label = "User"
    model = UserProfile
    columns = (
        "id",
        "name",
        "role",
        "latitude",
        "longitude",
        "address",
        "business_name",
        "average_rating",
        "completed_services",
        "notification_enabled",
        "created_at",
    )
    bool_columns = ("notification_enabled",)


class QuoteRequestTable(_Table[QuoteRequest]):
    table = "quote_requests"
    label = "Quote request"
    model = QuoteRequest
    columns = (
        "id",
        "customer_id",
        "pet_type",
        "pet_breed",
        "pet_age",
        "pet_weight",
        "service_type",
        "description",
        "latitude",
        "longitude",
        "address",
        "status",
        "review_status",
        "preferred_date",
        "pet_photos",
        "version",
        "created_at",
        "updated_at",
    )
    json_columns = ("pet_photos",)

    def _from_row(self, row: sqlite3.Row) -> QuoteRequest:
        request = super()._from_row(row)
        item_rows = self._conn.execute(
            """
            SELECT id, name, description, price, item_type
            FROM quote_items
            WHERE quote_request_id = ?
            ORDER BY position ASC
            """,
            (request.id,),
        ).fetchall()
        request.items = [
            QuoteItem(
                id=item["id"],
                name=item["name"],
                description=item["description"],
                price=item["price"],
                type=item["item_type"],
            )
            for item in item_rows
        ]
        return request

    def save(self, entity: QuoteRequest) -> QuoteRequest:
        current = self._conn.execute(
            "SELECT version FROM quote_requests WHERE id = ?",
            (entity.id,),
        ).fetchone()
        if current is not None:
            if int(current["version"]) != entity.version:
                raise MarketStateError("Quote request was modified concurrently")
            entity = entity.model_copy(update={"version": entity.version + 1})
        super().save(entity)

        self._conn.execute("DELETE FROM quote_items WHERE quote_request_id = ?", (entity.id,))
        for position, item in enumerate(entity.items):
            item_id = item.id or new_id("qi")
            self._conn.execute(
                """
                INSERT INTO quote_items (id, quote_request_id, position, name, description, price, item_type)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (item_id, entity.id, position, item.name, item.description, item.price, item.type),
            )
            item.id = item_id
        return entity


class QuoteResponseTable(_Table[QuoteResponse]):
    table = "quote_responses"
    label = "Quote offer"
    model = QuoteResponse
    columns = (
        "id",
        "quote_request_id",
        "business_id",
        "price",
        "description",
        "estimated_time",
        "available_date",
        "status",
        "payment_status",
        "before_photos",
        "after_photos",
        "created_at",
        "updated_at",
    )
    json_columns = ("before_photos", "after_photos")


class PaymentTable(_Table[Payment]):
    table = "payments"
    label = "Payment"
    model = Payment
    columns = (
        "id",
        "customer_id",
        "business_id",
        "quote_response_id",
        "amount",
        "method",
        "status",
        "payment_key",
        "order_id",
        "receipt_url",
        "cancel_reason",
        "refund_required",
        "paid_at",
        "created_at",
        "updated_at",
    )
    bool_columns = ("refund_required",)


class ReviewTable(_Table[Review]):
    table = "reviews"
    label = "Review"
    model = Review
    columns = (
        "id",
        "customer_id",
        "business_id",
        "quote_response_id",
        "rating",
        "content",
        "tags",
        "is_public",
        "created_at",
        "updated_at",
    )
    json_columns = ("tags",)
    bool_columns = ("is_public",)


class ChatRoomTable(_Table[ChatRoom]):
    table = "chat_rooms"
    label = "Chat room"
    model = ChatRoom
    columns = (
        "id",
        "quote_request_id",
        "quote_response_id",
        "customer_id",
        "business_id",
        "last_activity_at",
        "created_at",
    )


class ChatMessageTable(_Table[ChatMessage]):
    table = "chat_messages"
    label = "Chat message"
    model = ChatMessage
    columns = ("id", "room_id", "sender_id", "content", "read", "system", "created_at")
    bool_columns = ("read", "system")


class MarketSession:
    """All entity tables sharing one open transaction."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self.users = UserTable(conn)
        self.requests = QuoteRequestTable(conn)
        self.responses = QuoteResponseTable(conn)
        self.payments = PaymentTable(conn)
        self.reviews = ReviewTable(conn)
        self.chat_rooms = ChatRoomTable(conn)
        self.chat_messages = ChatMessageTable(conn)

    def recompute_completed_services(self, business_id: str) -> UserProfile:
        row = self.conn.execute(
            "SELECT COUNT(*) AS total FROM quote_responses WHERE business_id = ? AND status = 'ACCEPTED'",
            (business_id,),
        ).fetchone()
        business = self.users.get(business_id)
        business.completed_services = int(row["total"])
        return self.users.save(business)

    def recompute_average_rating(self, business_id: str) -> UserProfile:
        row = self.conn.execute(
            "SELECT AVG(rating) AS average FROM reviews WHERE business_id = ?",
            (business_id,),
        ).fetchone()
        business = self.users.get(business_id)
        business.average_rating = float(row["average"]) if row["average"] is not None else None
        return self.users.save(business)


@dataclass
class MarketStore:
    db_path: str

    def __post_init__(self) -> None:
        self._lock = Lock()
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None, timeout=10.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def transaction(self) -> Iterator[MarketSession]:
        """Serialize a unit of work; every save inside commits or rolls back together."""
        with self._lock:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    yield MarketSession(conn)
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
            finally:
                conn.close()

    def _init_db(self) -> None:
        with self.transaction() as session:
            conn = session.conn
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    role TEXT NOT NULL,
                    latitude REAL,
                    longitude REAL,
                    address TEXT NOT NULL DEFAULT '',
                    business_name TEXT,
                    average_rating REAL,
                    completed_services INTEGER NOT NULL DEFAULT 0,
                    notification_enabled INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS quote_requests (
                    id TEXT PRIMARY KEY,
                    customer_id TEXT NOT NULL REFERENCES users(id),
                    pet_type TEXT NOT NULL,
                    pet_breed TEXT NOT NULL DEFAULT '',
                    pet_age INTEGER,
                    pet_weight REAL,
                    service_type TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    latitude REAL,
                    longitude REAL,
                    address TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL,
                    review_status TEXT NOT NULL,
                    preferred_date TEXT,
                    pet_photos TEXT NOT NULL DEFAULT '[]',
                    version INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS quote_items (
                    id TEXT PRIMARY KEY,
                    quote_request_id TEXT NOT NULL REFERENCES quote_requests(id),
                    position INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    price INTEGER NOT NULL,
                    item_type TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS quote_responses (
                    id TEXT PRIMARY KEY,
                    quote_request_id TEXT NOT NULL REFERENCES quote_requests(id),
                    business_id TEXT NOT NULL REFERENCES users(id),
                    price INTEGER NOT NULL CHECK (price > 0),
                    description TEXT NOT NULL DEFAULT '',
                    estimated_time TEXT NOT NULL DEFAULT '',
                    available_date TEXT,
                    status TEXT NOT NULL,
                    payment_status TEXT NOT NULL,
                    before_photos TEXT NOT NULL DEFAULT '[]',
                    after_photos TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS ux_quote_responses_request_business
                ON quote_responses (quote_request_id, business_id)
                """
            )
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS ux_quote_responses_single_accepted
                ON quote_responses (quote_request_id)
                WHERE status = 'ACCEPTED'
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS payments (
                    id TEXT PRIMARY KEY,
                    customer_id TEXT NOT NULL REFERENCES users(id),
                    business_id TEXT NOT NULL REFERENCES users(id),
                    quote_response_id TEXT NOT NULL UNIQUE REFERENCES quote_responses(id),
                    amount INTEGER NOT NULL CHECK (amount > 0),
                    method TEXT NOT NULL,
                    status TEXT NOT NULL,
                    payment_key TEXT,
                    order_id TEXT NOT NULL UNIQUE,
                    receipt_url TEXT,
                    cancel_reason TEXT,
                    refund_required INTEGER NOT NULL DEFAULT 0,
                    paid_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS reviews (
                    id TEXT PRIMARY KEY,
                    customer_id TEXT NOT NULL REFERENCES users(id),
                    business_id TEXT NOT NULL REFERENCES users(id),
                    quote_response_id TEXT UNIQUE REFERENCES quote_responses(id),
                    rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
                    content TEXT NOT NULL DEFAULT '',
                    tags TEXT NOT NULL DEFAULT '[]',
                    is_public INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chat_rooms (
                    id TEXT PRIMARY KEY,
                    quote_request_id TEXT NOT NULL REFERENCES quote_requests(id),
                    quote_response_id TEXT NOT NULL UNIQUE REFERENCES quote_responses(id),
                    customer_id TEXT NOT NULL REFERENCES users(id),
                    business_id TEXT NOT NULL REFERENCES users(id),
                    last_activity_at TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chat_messages (
                    id TEXT PRIMARY KEY,
                    room_id TEXT NOT NULL REFERENCES chat_rooms(id),
                    sender_id TEXT NOT NULL REFERENCES users(id),
                    content TEXT NOT NULL,
                    read INTEGER NOT NULL DEFAULT 0,
                    system INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
                """
            )
            self._ensure_column(conn, "payments", "refund_required", "INTEGER NOT NULL DEFAULT 0")

    def _ensure_column(self, conn: sqlite3.Connection, table: str, column: str, definition: str) -> None:
        existing = {row["name"] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
        if column not in existing:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")

    def get_user(self, user_id: str) -> Optional[UserProfile]:
        with self.transaction() as session:
            return session.users.find(user_id)

    def save_user(self, user: UserProfile) -> UserProfile:
        with self.transaction() as session:
            return session.users.save(user)


market_store = MarketStore(db_path=settings.db_path)
