import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Iterator, List, Optional, Set
from uuid import uuid4

from marketplace import config
from marketplace.models import (
    Booking,
    BookingHistoryEntry,
    BookingPaymentInfo,
    BusinessSubscription,
    CapacityCheck,
    PaymentDetails,
    Service,
    ServiceCreateRequest,
    ServiceSummary,
    Slot,
    SubscriptionOverview,
    UserProfile,
)
from marketplace.services import booking_lifecycle
from marketplace.services.capacity_policy import ensure_capacity, evaluate_capacity
from marketplace.services.errors import (
    MarketplaceBadStateError,
    MarketplaceConflictError,
    MarketplaceError,
    MarketplaceNotFoundError,
    MarketplacePermissionError,
    MarketplaceValidationError,
)
from marketplace.services.time_windows import Window, day_bounds, find_conflict, generate_slot_windows

logger = logging.getLogger(__name__)

SERVICE_CATEGORIES = {"GRASS_CUTTING", "AIRCON_REPAIR", "CLEANING", "HAIRCUT"}
USER_ROLES = {"CUSTOMER", "PROVIDER", "ADMIN"}
BOOKING_STATUSES = {"PENDING", "CONFIRMED", "CANCELLED", "COMPLETED"}

__all__ = [
    "MarketplaceStore",
    "MarketplaceError",
    "marketplace_store",
]


def _normalize_datetime(value: datetime) -> datetime:
    # Scheduling is timezone-naive; drop tzinfo and sub-second precision.
    return value.replace(tzinfo=None, microsecond=0)


def _to_db(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return _normalize_datetime(value).isoformat(timespec="seconds")


def _from_db(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


@dataclass
class MarketplaceStore:
    db_path: str
    seed_demo_data: bool = False
    clock: Callable[[], datetime] = datetime.now
    workday_start: time = config.WORKDAY_START
    workday_end: time = config.WORKDAY_END
    slot_step_minutes: int = config.SLOT_STEP_MINUTES
    max_service_duration_minutes: int = config.MAX_SERVICE_DURATION_MINUTES
    admin_user_ids: Set[str] = field(default_factory=lambda: set(config.ADMIN_USER_IDS))

    def __post_init__(self) -> None:
        self._lock = Lock()
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._init_db()
        if self.seed_demo_data:
            self._seed_if_needed()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path,
            timeout=config.SQLITE_BUSY_TIMEOUT_SECONDS,
            check_same_thread=False,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Serializable unit of work: the write lock is taken before any read."""
        with self._lock:
            conn = self._connect()
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._connect()
            try:
                yield conn
            finally:
                conn.close()

    def _now(self) -> datetime:
        return _normalize_datetime(self.clock())

    def _init_db(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL DEFAULT '',
                    role TEXT NOT NULL DEFAULT 'CUSTOMER',
                    payment_qr_code TEXT,
                    payment_notes TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS services (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    category TEXT NOT NULL,
                    base_price TEXT NOT NULL,
                    duration_minutes INTEGER NOT NULL,
                    provider_id TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bookings (
                    id TEXT PRIMARY KEY,
                    service_id TEXT NOT NULL,
                    customer_id TEXT NOT NULL,
                    provider_id TEXT NOT NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'PENDING',
                    payment_status TEXT NOT NULL DEFAULT 'UNPAID',
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    CHECK (end_time > start_time)
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_bookings_provider_timeline ON bookings (provider_id, status, start_time)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_bookings_customer ON bookings (customer_id, start_time)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS booking_status_history (
                    id TEXT PRIMARY KEY,
                    booking_id TEXT NOT NULL,
                    actor_user_id TEXT NOT NULL,
                    field TEXT NOT NULL,
                    from_value TEXT NOT NULL,
                    to_value TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS business_subscriptions (
                    id TEXT PRIMARY KEY,
                    provider_id TEXT NOT NULL UNIQUE,
                    status TEXT NOT NULL DEFAULT 'PENDING',
                    service_limit INTEGER NOT NULL DEFAULT 1,
                    payment_sent_at TEXT,
                    activated_at TEXT,
                    activated_by TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )

    def _seed_if_needed(self) -> None:
        seed_users = [
            {"id": "admin_1", "name": "Admin User", "role": "ADMIN", "qr": "https://example.com/qr/admin", "notes": "GCash: 09170000000"},
            {"id": "provider_1", "name": "Juan Dela Cruz", "role": "PROVIDER", "qr": "https://example.com/qr/juan", "notes": "GCash: 09171234567"},
            {"id": "provider_2", "name": "Maria Santos", "role": "PROVIDER", "qr": "https://example.com/qr/maria", "notes": "Maya: 09181234567"},
            {"id": "provider_3", "name": "Pedro Reyes", "role": "PROVIDER", "qr": "https://example.com/qr/pedro", "notes": "BPI: 1234567890"},
            {"id": "customer_1", "name": "Anna Garcia", "role": "CUSTOMER", "qr": None, "notes": None},
            {"id": "customer_2", "name": "Carlos Mendoza", "role": "CUSTOMER", "qr": None, "notes": None},
            {"id": "customer_3", "name": "Diana Lopez", "role": "CUSTOMER", "qr": None, "notes": None},
        ]
        seed_services = [
            ("svc_lawn", "Lawn Mowing Service", "Professional lawn mowing for residential properties. Includes edging and cleanup.", "GRASS_CUTTING", "500", 60, "provider_1"),
            ("svc_garden", "Garden Maintenance", "Complete garden care including grass cutting, trimming, and weeding.", "GRASS_CUTTING", "800", 120, "provider_1"),
            ("svc_aircon", "Aircon Cleaning & Repair", "Full aircon service including cleaning, gas refill, and minor repairs.", "AIRCON_REPAIR", "1500", 90, "provider_2"),
            ("svc_haircut", "Home Haircut", "Haircut at your doorstep for the whole family.", "HAIRCUT", "300", 30, "provider_3"),
        ]
        now = _to_db(self._now())
        with self._transaction() as conn:
            existing = conn.execute("SELECT COUNT(*) AS total FROM users").fetchone()
            if existing["total"]:
                return
            for user in seed_users:
                conn.execute(
                    """
                    INSERT INTO users (id, name, role, payment_qr_code, payment_notes, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (user["id"], user["name"], user["role"], user["qr"], user["notes"], now),
                )
            for service_id, title, description, category, price, duration, provider_id in seed_services:
                conn.execute(
                    """
                    INSERT INTO services (id, title, description, category, base_price, duration_minutes, provider_id, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (service_id, title, description, category, price, duration, provider_id, now),
                )
            # provider_1 holds two listings, so it starts on an active plan.
            conn.execute(
                """
                INSERT INTO business_subscriptions (id, provider_id, status, service_limit, payment_sent_at, activated_at, activated_by, created_at)
                VALUES (?, ?, 'ACTIVE', ?, ?, ?, ?, ?)
                """,
                (f"sub_{uuid4().hex[:10]}", "provider_1", config.ACTIVE_SERVICE_LIMIT, now, now, "admin_1", now),
            )
        logger.info("Seeded demo marketplace data")

    # ------------------------------------------------------------------
    # Row mapping

    def _row_to_user(self, row: sqlite3.Row) -> UserProfile:
        return UserProfile(
            id=row["id"],
            name=row["name"],
            role=row["role"],
            payment_qr_code=row["payment_qr_code"],
            payment_notes=row["payment_notes"],
            created_at=_from_db(row["created_at"]),
        )

    def _row_to_service(self, row: sqlite3.Row) -> Service:
        return Service(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            category=row["category"],
            base_price=Decimal(row["base_price"]),
            duration_minutes=int(row["duration_minutes"]),
            provider_id=row["provider_id"],
            created_at=_from_db(row["created_at"]),
        )

    def _row_to_booking(self, row: sqlite3.Row) -> Booking:
        return Booking(
            id=row["id"],
            service_id=row["service_id"],
            customer_id=row["customer_id"],
            provider_id=row["provider_id"],
            start_time=_from_db(row["start_time"]),
            end_time=_from_db(row["end_time"]),
            status=row["status"],
            payment_status=row["payment_status"],
            notes=row["notes"],
            created_at=_from_db(row["created_at"]),
            updated_at=_from_db(row["updated_at"]),
        )

    def _row_to_subscription(self, row: sqlite3.Row) -> BusinessSubscription:
        return BusinessSubscription(
            id=row["id"],
            provider_id=row["provider_id"],
            status=row["status"],
            service_limit=int(row["service_limit"]),
            payment_sent_at=_from_db(row["payment_sent_at"]),
            activated_at=_from_db(row["activated_at"]),
            activated_by=row["activated_by"],
            created_at=_from_db(row["created_at"]),
        )

    # ------------------------------------------------------------------
    # Users and roles

    def _load_user(self, conn: sqlite3.Connection, user_id: str) -> Optional[UserProfile]:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def _require_role(self, conn: sqlite3.Connection, user_id: str, roles: Set[str], message: str) -> UserProfile:
        user = self._load_user(conn, user_id)
        if not user or user.role not in roles:
            raise MarketplacePermissionError(message)
        return user

    def ensure_user(self, user_id: str, name: str = "") -> UserProfile:
        user_id = user_id.strip()
        if not user_id:
            raise MarketplaceValidationError("user_id is required")
        with self._transaction() as conn:
            existing = self._load_user(conn, user_id)
            if existing:
                return existing
            role = "ADMIN" if user_id in self.admin_user_ids else "CUSTOMER"
            conn.execute(
                "INSERT INTO users (id, name, role, created_at) VALUES (?, ?, ?, ?)",
                (user_id, name.strip(), role, _to_db(self._now())),
            )
            created = self._load_user(conn, user_id)
        logger.info("Registered user %s as %s", user_id, role)
        return created

    def get_user(self, user_id: str) -> UserProfile:
        with self._reader() as conn:
            user = self._load_user(conn, user_id)
        if not user:
            raise MarketplaceNotFoundError("User not found")
        return user

    def update_profile(self, user_id: str, name: str) -> UserProfile:
        cleaned = name.strip()
        if not cleaned or len(cleaned) > 100:
            raise MarketplaceValidationError("name must be 1-100 characters")
        with self._transaction() as conn:
            if not self._load_user(conn, user_id):
                raise MarketplaceNotFoundError("User not found")
            conn.execute("UPDATE users SET name = ? WHERE id = ?", (cleaned, user_id))
            return self._load_user(conn, user_id)

    def choose_role(self, user_id: str, role: str) -> UserProfile:
        if role not in {"CUSTOMER", "PROVIDER"}:
            raise MarketplaceValidationError("Invalid role. Allowed: CUSTOMER, PROVIDER")
        with self._transaction() as conn:
            user = self._load_user(conn, user_id)
            if not user:
                raise MarketplaceNotFoundError("User not found")
            if user.role == "ADMIN":
                raise MarketplacePermissionError("Admins cannot change their own role")
            conn.execute("UPDATE users SET role = ? WHERE id = ?", (role, user_id))
            return self._load_user(conn, user_id)

    def assign_role(self, *, actor_user_id: str, user_id: str, role: str) -> UserProfile:
        if role not in USER_ROLES:
            raise MarketplaceValidationError("Invalid role. Allowed: CUSTOMER, PROVIDER, ADMIN")
        with self._transaction() as conn:
            self._require_role(conn, actor_user_id, {"ADMIN"}, "Only admins can update user roles")
            if not self._load_user(conn, user_id):
                raise MarketplaceNotFoundError("User not found")
            conn.execute("UPDATE users SET role = ? WHERE id = ?", (role, user_id))
            updated = self._load_user(conn, user_id)
        logger.info("Admin %s set role of %s to %s", actor_user_id, user_id, role)
        return updated

    def update_payment_details(
        self,
        *,
        user_id: str,
        payment_qr_code: Optional[str],
        payment_notes: Optional[str],
    ) -> UserProfile:
        qr_code = (payment_qr_code or "").strip() or None
        notes = (payment_notes or "").strip() or None
        if qr_code and not qr_code.lower().startswith(("http://", "https://")):
            raise MarketplaceValidationError("payment_qr_code must be an http(s) URL")
        if notes and len(notes) > 500:
            raise MarketplaceValidationError("payment_notes must be at most 500 characters")
        with self._transaction() as conn:
            self._require_role(
                conn, user_id, {"PROVIDER", "ADMIN"}, "Only providers and admins can update payment details"
            )
            conn.execute(
                "UPDATE users SET payment_qr_code = ?, payment_notes = ? WHERE id = ?",
                (qr_code, notes, user_id),
            )
            return self._load_user(conn, user_id)

    def delete_payment_qr_code(self, user_id: str) -> UserProfile:
        with self._transaction() as conn:
            self._require_role(
                conn, user_id, {"PROVIDER", "ADMIN"}, "Only providers and admins can manage payment details"
            )
            conn.execute("UPDATE users SET payment_qr_code = NULL WHERE id = ?", (user_id,))
            return self._load_user(conn, user_id)

    # ------------------------------------------------------------------
    # Service catalog and capacity

    def list_services(self, category: Optional[str] = None, search: Optional[str] = None) -> List[Service]:
        if category and category not in SERVICE_CATEGORIES:
            raise MarketplaceValidationError(f"Invalid category. Allowed: {', '.join(sorted(SERVICE_CATEGORIES))}")
        query = "SELECT * FROM services WHERE 1 = 1"
        params: List[Any] = []
        if category:
            query += " AND category = ?"
            params.append(category)
        if search and search.strip():
            term = f"%{search.strip().lower()}%"
            query += " AND (LOWER(title) LIKE ? OR LOWER(description) LIKE ?)"
            params.extend([term, term])
        query += " ORDER BY created_at DESC, id"
        with self._reader() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_service(row) for row in rows]

    def _load_service(self, conn: sqlite3.Connection, service_id: str) -> Service:
        row = conn.execute("SELECT * FROM services WHERE id = ?", (service_id,)).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Service not found")
        return self._row_to_service(row)

    def get_service(self, service_id: str) -> Service:
        with self._reader() as conn:
            return self._load_service(conn, service_id)

    def _load_subscription(self, conn: sqlite3.Connection, provider_id: str) -> Optional[BusinessSubscription]:
        row = conn.execute("SELECT * FROM business_subscriptions WHERE provider_id = ?", (provider_id,)).fetchone()
        return self._row_to_subscription(row) if row else None

    def _capacity(self, conn: sqlite3.Connection, provider_id: str) -> CapacityCheck:
        current = conn.execute(
            "SELECT COUNT(*) AS total FROM services WHERE provider_id = ?",
            (provider_id,),
        ).fetchone()
        return evaluate_capacity(int(current["total"]), self._load_subscription(conn, provider_id))

    def can_add_service(self, provider_id: str) -> CapacityCheck:
        with self._reader() as conn:
            user = self._load_user(conn, provider_id)
            if not user or user.role != "PROVIDER":
                return CapacityCheck(allowed=False, limit=0, current_count=0, reason="Not a provider")
            return self._capacity(conn, provider_id)

    def create_service(self, request: ServiceCreateRequest) -> Service:
        title = request.title.strip()
        description = request.description.strip()
        if not title or len(title) > 100:
            raise MarketplaceValidationError("title must be 1-100 characters")
        if not description or len(description) > 1000:
            raise MarketplaceValidationError("description must be 1-1000 characters")
        if request.category not in SERVICE_CATEGORIES:
            raise MarketplaceValidationError(f"Invalid category. Allowed: {', '.join(sorted(SERVICE_CATEGORIES))}")
        try:
            base_price = Decimal(request.base_price)
        except InvalidOperation as exc:
            raise MarketplaceValidationError("base_price must be a decimal amount") from exc
        if base_price <= 0:
            raise MarketplaceValidationError("base_price must be greater than 0")
        duration = int(request.duration_minutes)
        if duration <= 0 or duration > self.max_service_duration_minutes:
            raise MarketplaceValidationError(
                f"duration_minutes must be between 1 and {self.max_service_duration_minutes}"
            )

        with self._transaction() as conn:
            self._require_role(conn, request.provider_id, {"PROVIDER"}, "Only providers can create services")
            check = self._capacity(conn, request.provider_id)
            try:
                ensure_capacity(check)
            except MarketplaceError:
                logger.warning(
                    "Service creation refused for %s: %s/%s listings",
                    request.provider_id,
                    check.current_count,
                    check.limit,
                )
                raise
            service_id = f"svc_{uuid4().hex[:8]}"
            conn.execute(
                """
                INSERT INTO services (id, title, description, category, base_price, duration_minutes, provider_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    service_id,
                    title,
                    description,
                    request.category,
                    str(base_price),
                    duration,
                    request.provider_id,
                    _to_db(self._now()),
                ),
            )
            service = self._load_service(conn, service_id)
        logger.info("Provider %s created service %s", request.provider_id, service.id)
        return service

    # ------------------------------------------------------------------
    # Slots and booking creation

    def _active_windows(self, rows: List[sqlite3.Row]) -> List[Window]:
        return [(_from_db(row["start_time"]), _from_db(row["end_time"])) for row in rows]

    def get_available_slots(self, service_id: str, day: date) -> List[Slot]:
        start_of_day, end_of_day = day_bounds(day)
        with self._reader() as conn:
            service = self._load_service(conn, service_id)
            rows = conn.execute(
                """
                SELECT start_time, end_time FROM bookings
                WHERE provider_id = ? AND status IN ('PENDING', 'CONFIRMED')
                  AND start_time >= ? AND start_time <= ?
                ORDER BY start_time
                """,
                (service.provider_id, _to_db(start_of_day), _to_db(end_of_day)),
            ).fetchall()
        busy = self._active_windows(rows)

        return [
            Slot(
                start_time=slot_start,
                end_time=slot_end,
                available=find_conflict(slot_start, slot_end, busy) is None,
            )
            for slot_start, slot_end in generate_slot_windows(
                day,
                service.duration_minutes,
                self.workday_start,
                self.workday_end,
                self.slot_step_minutes,
            )
        ]

    def create_booking(
        self,
        *,
        customer_id: str,
        service_id: str,
        start_time: datetime,
        notes: Optional[str] = None,
    ) -> Booking:
        if not customer_id.strip():
            raise MarketplaceValidationError("customer_id is required")
        start = _normalize_datetime(start_time)
        cleaned_notes = (notes or "").strip() or None

        with self._transaction() as conn:
            service = self._load_service(conn, service_id)
            try:
                end = start + timedelta(minutes=service.duration_minutes)
            except OverflowError as exc:
                raise MarketplaceValidationError("start_time out of range") from exc
            rows = conn.execute(
                """
                SELECT start_time, end_time FROM bookings
                WHERE provider_id = ? AND status IN ('PENDING', 'CONFIRMED')
                """,
                (service.provider_id,),
            ).fetchall()
            clash = find_conflict(start, end, self._active_windows(rows))
            if clash:
                logger.warning(
                    "Booking conflict for provider %s: requested %s-%s overlaps %s-%s",
                    service.provider_id,
                    start.isoformat(),
                    end.isoformat(),
                    clash[0].isoformat(),
                    clash[1].isoformat(),
                )
                raise MarketplaceConflictError(
                    "This time slot is already booked",
                    conflict_start=clash[0],
                    conflict_end=clash[1],
                )

            now = _to_db(self._now())
            booking_id = f"bk_{uuid4().hex[:10]}"
            conn.execute(
                """
                INSERT INTO bookings (
                    id, service_id, customer_id, provider_id, start_time, end_time,
                    status, payment_status, notes, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, 'PENDING', 'UNPAID', ?, ?, ?)
                """,
                (
                    booking_id,
                    service.id,
                    customer_id,
                    service.provider_id,
                    _to_db(start),
                    _to_db(end),
                    cleaned_notes,
                    now,
                    now,
                ),
            )
            self._record_history(conn, booking_id, customer_id, "status", "NONE", "PENDING")
            booking = self._load_booking(conn, booking_id)
        logger.info("Booking %s created for provider %s at %s", booking.id, booking.provider_id, start.isoformat())
        return booking

    # ------------------------------------------------------------------
    # Booking reads

    def _load_booking(self, conn: sqlite3.Connection, booking_id: str) -> Booking:
        row = conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Booking not found")
        return self._row_to_booking(row)

    def get_booking(self, caller_id: str, booking_id: str) -> Booking:
        with self._reader() as conn:
            booking = self._load_booking(conn, booking_id)
        booking_lifecycle.require_party(booking, caller_id)
        return booking

    def get_payment_info(self, caller_id: str, booking_id: str) -> BookingPaymentInfo:
        with self._reader() as conn:
            booking = self._load_booking(conn, booking_id)
            booking_lifecycle.require_party(booking, caller_id)
            service = self._load_service(conn, booking.service_id)
            provider = self._load_user(conn, booking.provider_id)
        return BookingPaymentInfo(
            booking=booking,
            service=ServiceSummary(id=service.id, title=service.title, base_price=service.base_price),
            provider=PaymentDetails(
                user_id=booking.provider_id,
                name=provider.name if provider else "",
                payment_qr_code=provider.payment_qr_code if provider else None,
                payment_notes=provider.payment_notes if provider else None,
            ),
            is_customer=caller_id == booking.customer_id,
            is_provider=caller_id == booking.provider_id,
        )

    def get_provider_schedule(
        self,
        provider_id: str,
        status: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[Booking]:
        if status and status not in BOOKING_STATUSES:
            raise MarketplaceValidationError(f"Invalid status. Allowed: {', '.join(sorted(BOOKING_STATUSES))}")
        query = "SELECT * FROM bookings WHERE provider_id = ?"
        params: List[Any] = [provider_id]
        if date_from:
            query += " AND start_time >= ?"
            params.append(_to_db(date_from))
        if date_to:
            query += " AND end_time <= ?"
            params.append(_to_db(date_to))
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY start_time ASC"
        with self._reader() as conn:
            self._require_role(conn, provider_id, {"PROVIDER"}, "Only providers can view their schedule")
            rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_booking(row) for row in rows]

    def get_customer_bookings(self, customer_id: str, status: Optional[str] = None) -> List[Booking]:
        if status and status not in BOOKING_STATUSES:
            raise MarketplaceValidationError(f"Invalid status. Allowed: {', '.join(sorted(BOOKING_STATUSES))}")
        query = "SELECT * FROM bookings WHERE customer_id = ?"
        params: List[Any] = [customer_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY start_time DESC"
        with self._reader() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [self._row_to_booking(row) for row in rows]

    def list_booking_history(self, caller_id: str, booking_id: str) -> List[BookingHistoryEntry]:
        with self._reader() as conn:
            booking = self._load_booking(conn, booking_id)
            booking_lifecycle.require_party(booking, caller_id)
            rows = conn.execute(
                "SELECT * FROM booking_status_history WHERE booking_id = ? ORDER BY created_at, rowid",
                (booking_id,),
            ).fetchall()
        return [
            BookingHistoryEntry(
                id=row["id"],
                booking_id=row["booking_id"],
                actor_user_id=row["actor_user_id"],
                field=row["field"],
                from_value=row["from_value"],
                to_value=row["to_value"],
                created_at=_from_db(row["created_at"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Booking lifecycle

    def _record_history(
        self,
        conn: sqlite3.Connection,
        booking_id: str,
        actor_user_id: str,
        field_name: str,
        from_value: str,
        to_value: str,
    ) -> None:
        conn.execute(
            """
            INSERT INTO booking_status_history (id, booking_id, actor_user_id, field, from_value, to_value, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (f"bsh_{uuid4().hex[:10]}", booking_id, actor_user_id, field_name, from_value, to_value, _to_db(self._now())),
        )

    def _mutate_booking(
        self,
        booking_id: str,
        actor_user_id: str,
        plan: Callable[[Booking], booking_lifecycle.BookingChange],
    ) -> Booking:
        with self._transaction() as conn:
            booking = self._load_booking(conn, booking_id)
            change = plan(booking)
            cursor = conn.execute(
                """
                UPDATE bookings SET status = ?, payment_status = ?, updated_at = ?
                WHERE id = ? AND status = ? AND payment_status = ?
                """,
                (
                    change.status,
                    change.payment_status,
                    _to_db(self._now()),
                    change.booking_id,
                    change.expected_status,
                    change.expected_payment_status,
                ),
            )
            if cursor.rowcount != 1:
                current = self._load_booking(conn, booking_id)
                raise MarketplaceBadStateError(
                    "Booking was modified concurrently; reload and retry",
                    current_status=current.status,
                    current_payment_status=current.payment_status,
                )
            for field_name, from_value, to_value in change.history:
                self._record_history(conn, booking_id, actor_user_id, field_name, from_value, to_value)
            updated = self._load_booking(conn, booking_id)
        for field_name, from_value, to_value in change.history:
            logger.info("Booking %s %s %s -> %s by %s", booking_id, field_name, from_value, to_value, actor_user_id)
        return updated

    def update_booking_status(self, caller_id: str, booking_id: str, new_status: str) -> Booking:
        now = self._now()
        return self._mutate_booking(
            booking_id,
            caller_id,
            lambda booking: booking_lifecycle.plan_status_change(booking, caller_id, new_status, now),
        )

    def cancel_booking(self, caller_id: str, booking_id: str) -> Booking:
        return self.update_booking_status(caller_id, booking_id, "CANCELLED")

    def mark_as_paid(self, customer_id: str, booking_id: str) -> Booking:
        return self._mutate_booking(
            booking_id,
            customer_id,
            lambda booking: booking_lifecycle.plan_mark_paid(booking, customer_id),
        )

    def confirm_payment(self, provider_id: str, booking_id: str) -> Booking:
        return self._mutate_booking(
            booking_id,
            provider_id,
            lambda booking: booking_lifecycle.plan_confirm_payment(booking, provider_id),
        )

    # ------------------------------------------------------------------
    # Subscriptions

    def _ensure_subscription(self, conn: sqlite3.Connection, provider_id: str) -> BusinessSubscription:
        subscription = self._load_subscription(conn, provider_id)
        if subscription:
            return subscription
        conn.execute(
            """
            INSERT INTO business_subscriptions (id, provider_id, status, service_limit, created_at)
            VALUES (?, ?, 'PENDING', ?, ?)
            """,
            (f"sub_{uuid4().hex[:10]}", provider_id, config.FREE_TIER_SERVICE_LIMIT, _to_db(self._now())),
        )
        return self._load_subscription(conn, provider_id)

    def get_subscription(self, provider_id: str) -> SubscriptionOverview:
        with self._transaction() as conn:
            self._require_role(conn, provider_id, {"PROVIDER"}, "Only providers can access subscription info")
            subscription = self._ensure_subscription(conn, provider_id)
            check = self._capacity(conn, provider_id)
        return SubscriptionOverview(
            subscription=subscription,
            current_service_count=check.current_count,
            can_add_service=check.allowed,
        )

    def mark_subscription_payment_sent(self, provider_id: str) -> BusinessSubscription:
        with self._transaction() as conn:
            self._require_role(conn, provider_id, {"PROVIDER"}, "Only providers can mark payment as sent")
            subscription = self._ensure_subscription(conn, provider_id)
            if subscription.status == "ACTIVE":
                raise MarketplaceBadStateError("Subscription is already active", current_status=subscription.status)
            conn.execute(
                """
                UPDATE business_subscriptions SET status = 'PAYMENT_SENT', payment_sent_at = ?
                WHERE id = ? AND status != 'ACTIVE'
                """,
                (_to_db(self._now()), subscription.id),
            )
            updated = self._load_subscription(conn, provider_id)
        logger.info("Provider %s marked subscription payment as sent", provider_id)
        return updated

    def list_pending_activations(self, admin_id: str) -> List[BusinessSubscription]:
        with self._reader() as conn:
            self._require_role(conn, admin_id, {"ADMIN"}, "Only admins can view activation requests")
            rows = conn.execute(
                "SELECT * FROM business_subscriptions WHERE status = 'PAYMENT_SENT' ORDER BY payment_sent_at ASC"
            ).fetchall()
        return [self._row_to_subscription(row) for row in rows]

    def activate_subscription(
        self,
        *,
        admin_id: str,
        subscription_id: str,
        service_limit: Optional[int] = None,
    ) -> BusinessSubscription:
        if service_limit is not None and service_limit <= 0:
            raise MarketplaceValidationError("service_limit must be greater than 0")
        with self._transaction() as conn:
            self._require_role(conn, admin_id, {"ADMIN"}, "Only admins can activate subscriptions")
            row = conn.execute("SELECT * FROM business_subscriptions WHERE id = ?", (subscription_id,)).fetchone()
            if not row:
                raise MarketplaceNotFoundError("Subscription not found")
            subscription = self._row_to_subscription(row)
            if subscription.status != "PAYMENT_SENT":
                raise MarketplaceBadStateError(
                    "Only subscriptions with payment sent can be activated",
                    current_status=subscription.status,
                )
            limit = service_limit or max(subscription.service_limit, config.ACTIVE_SERVICE_LIMIT)
            cursor = conn.execute(
                """
                UPDATE business_subscriptions
                SET status = 'ACTIVE', service_limit = ?, activated_at = ?, activated_by = ?
                WHERE id = ? AND status = 'PAYMENT_SENT'
                """,
                (limit, _to_db(self._now()), admin_id, subscription_id),
            )
            if cursor.rowcount != 1:
                raise MarketplaceBadStateError("Subscription was modified concurrently; reload and retry")
            updated = self._load_subscription(conn, subscription.provider_id)
        logger.info("Admin %s activated subscription %s with limit %s", admin_id, subscription_id, limit)
        return updated

    def get_payment_collector(self) -> PaymentDetails:
        collector_id = config.PAYMENT_COLLECTOR_USER_ID
        if not collector_id:
            raise MarketplaceNotFoundError("Payment collector is not configured")
        with self._reader() as conn:
            user = self._load_user(conn, collector_id)
        if not user or not user.payment_qr_code:
            raise MarketplaceNotFoundError("Admin payment QR code not set up yet")
        return PaymentDetails(
            user_id=user.id,
            name=user.name,
            payment_qr_code=user.payment_qr_code,
            payment_notes=user.payment_notes,
        )


marketplace_store = MarketplaceStore(db_path=config.DB_PATH, seed_demo_data=config.SEED_DEMO_DATA)
