import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Set, TypeVar
from uuid import uuid4

from app import settings
from app.models import (
    Appointment,
    AppointmentStatusChange,
    AvailabilityRule,
    AvailabilityRuleInput,
    BlockedRange,
    Provider,
    ProviderBreak,
    ProviderDetails,
    ProviderServiceOffering,
    ServiceTemplate,
)
from app.services.errors import (
    SchedulingConflictError,
    SchedulingInternalError,
    SchedulingNotFoundError,
    SchedulingPermissionError,
    SchedulingValidationError,
)
from app.services.time_codec import parse_date, to_minutes

logger = logging.getLogger(__name__)

T = TypeVar("T")

ACTIVE_APPOINTMENT_FILTER = "status NOT IN ('canceled', 'no_show')"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class DayFacts:
    """Everything the store knows about one provider on one calendar day."""

    provider: Provider
    rules: List[AvailabilityRule] = field(default_factory=list)
    blocked_ranges: List[BlockedRange] = field(default_factory=list)
    breaks: List[ProviderBreak] = field(default_factory=list)
    appointments: List[Appointment] = field(default_factory=list)


@dataclass
class ScheduleStore:
    db_path: str
    timeout: float = 5.0
    read_retries: int = 2
    seed_demo: bool = False

    def __post_init__(self) -> None:
        self._lock = Lock()
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._init_db()
        if self.seed_demo:
            self._seed_if_needed()

    def _connect(self, timeout: Optional[float] = None) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=timeout or self.timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS niches (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS categories (
                        id TEXT PRIMARY KEY,
                        niche_id TEXT NOT NULL,
                        name TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS service_templates (
                        id TEXT PRIMARY KEY,
                        category_id TEXT NOT NULL,
                        name TEXT NOT NULL,
                        duration INTEGER NOT NULL DEFAULT 60
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS providers (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        description TEXT NOT NULL DEFAULT '',
                        city TEXT NOT NULL DEFAULT '',
                        timezone TEXT NOT NULL DEFAULT 'America/Sao_Paulo',
                        latitude REAL,
                        longitude REAL,
                        rating INTEGER,
                        review_count INTEGER NOT NULL DEFAULT 0,
                        status TEXT NOT NULL DEFAULT 'active',
                        owner_user_id TEXT
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS provider_services (
                        id TEXT PRIMARY KEY,
                        provider_id TEXT NOT NULL,
                        service_id TEXT NOT NULL,
                        duration INTEGER,
                        price REAL,
                        is_active INTEGER NOT NULL DEFAULT 1,
                        UNIQUE (provider_id, service_id)
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS clients (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        email TEXT
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS availability_rules (
                        id TEXT PRIMARY KEY,
                        provider_id TEXT NOT NULL,
                        day_of_week INTEGER,
                        specific_date TEXT,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        is_available INTEGER NOT NULL DEFAULT 1,
                        interval_minutes INTEGER NOT NULL DEFAULT 30
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS blocked_ranges (
                        id TEXT PRIMARY KEY,
                        provider_id TEXT NOT NULL,
                        date TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        reason TEXT NOT NULL DEFAULT '',
                        block_type TEXT NOT NULL DEFAULT 'manual',
                        recurrent_id TEXT,
                        appointment_id TEXT,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS provider_breaks (
                        id TEXT PRIMARY KEY,
                        provider_id TEXT NOT NULL,
                        name TEXT NOT NULL DEFAULT 'Break',
                        day_of_week INTEGER,
                        date TEXT,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        is_recurring INTEGER NOT NULL DEFAULT 1
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS appointments (
                        id TEXT PRIMARY KEY,
                        provider_id TEXT NOT NULL,
                        client_id TEXT NOT NULL,
                        service_id TEXT NOT NULL,
                        service_ids_json TEXT NOT NULL DEFAULT '[]',
                        date TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        status TEXT NOT NULL,
                        payment_status TEXT NOT NULL DEFAULT 'pending',
                        notes TEXT NOT NULL DEFAULT '',
                        is_manually_created INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS appointment_status_history (
                        id TEXT PRIMARY KEY,
                        appointment_id TEXT NOT NULL,
                        actor_user_id TEXT NOT NULL,
                        from_status TEXT NOT NULL,
                        to_status TEXT NOT NULL,
                        note TEXT NOT NULL DEFAULT '',
                        created_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    f"""
                    CREATE UNIQUE INDEX IF NOT EXISTS idx_appointments_active_start
                    ON appointments (provider_id, date, start_time)
                    WHERE {ACTIVE_APPOINTMENT_FILTER}
                    """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_blocked_ranges_day ON blocked_ranges (provider_id, date)"
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_availability_rules_provider ON availability_rules (provider_id)"
                )
                self._ensure_column(conn, "providers", "review_count", "INTEGER NOT NULL DEFAULT 0")
                self._ensure_column(conn, "blocked_ranges", "appointment_id", "TEXT")
                conn.commit()

    def _ensure_column(self, conn: sqlite3.Connection, table: str, column: str, definition: str) -> None:
        columns = conn.execute(f"PRAGMA table_info({table})").fetchall()
        existing = {row["name"] for row in columns}
        if column in existing:
            return
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")

    def _seed_if_needed(self) -> None:
        niches = [("niche_beauty", "Beauty"), ("niche_wellness", "Wellness")]
        categories = [
            ("cat_hair", "niche_beauty", "Hair"),
            ("cat_nails", "niche_beauty", "Nails"),
            ("cat_massage", "niche_wellness", "Massage"),
        ]
        templates = [
            ("svc_haircut", "cat_hair", "Haircut", 30),
            ("svc_beard", "cat_hair", "Beard trim", 30),
            ("svc_coloring", "cat_hair", "Hair coloring", 60),
            ("svc_manicure", "cat_nails", "Manicure", 45),
            ("svc_pedicure", "cat_nails", "Pedicure", 60),
            ("svc_massage", "cat_massage", "Relaxing massage", 60),
        ]
        providers = [
            ("prov_1", "Studio Bella", "Cuts, color and styling.", "Sao Paulo", -23.5614, -46.6559, 48, 212, "user_p1"),
            ("prov_2", "Corte & Arte", "Classic barbershop.", "Sao Paulo", -23.5505, -46.6333, 42, 97, "user_p2"),
            ("prov_3", "Spa Serenity", "Massage and nail care.", "Sao Paulo", -23.5880, -46.6820, 45, 150, "user_p3"),
            ("prov_4", "Rio Nails", "Nail studio by the beach.", "Rio de Janeiro", -22.9068, -43.1729, 39, 41, "user_p4"),
        ]
        offerings = [
            ("prov_1", "svc_haircut", None, 80.0),
            ("prov_1", "svc_coloring", None, 180.0),
            ("prov_1", "svc_manicure", 40, 50.0),
            ("prov_2", "svc_haircut", 45, 60.0),
            ("prov_2", "svc_beard", None, 40.0),
            ("prov_3", "svc_massage", 90, 220.0),
            ("prov_3", "svc_manicure", None, 55.0),
            ("prov_3", "svc_pedicure", None, 65.0),
            ("prov_4", "svc_manicure", None, 45.0),
            ("prov_4", "svc_pedicure", None, 55.0),
        ]
        clients = [
            ("client_1", "Ana Souza", "ana@example.com"),
            ("client_2", "Bruno Lima", "bruno@example.com"),
        ]
        with self._lock:
            with self._connect() as conn:
                existing = conn.execute("SELECT COUNT(*) AS c FROM providers").fetchone()["c"]
                if existing:
                    return
                conn.executemany("INSERT INTO niches (id, name) VALUES (?, ?)", niches)
                conn.executemany("INSERT INTO categories (id, niche_id, name) VALUES (?, ?, ?)", categories)
                conn.executemany(
                    "INSERT INTO service_templates (id, category_id, name, duration) VALUES (?, ?, ?, ?)",
                    templates,
                )
                conn.executemany(
                    """
                    INSERT INTO providers (id, name, description, city, latitude, longitude, rating, review_count, owner_user_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    providers,
                )
                conn.executemany(
                    """
                    INSERT INTO provider_services (id, provider_id, service_id, duration, price)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [(f"ps_{provider_id}_{service_id}", provider_id, service_id, duration, price) for provider_id, service_id, duration, price in offerings],
                )
                conn.executemany("INSERT INTO clients (id, name, email) VALUES (?, ?, ?)", clients)
                rules = []
                for provider_id, *_ in providers:
                    for day_of_week in range(1, 6):
                        rules.append((provider_id, day_of_week, "09:00", "12:00"))
                        rules.append((provider_id, day_of_week, "13:00", "18:00"))
                    rules.append((provider_id, 6, "09:00", "13:00"))
                conn.executemany(
                    """
                    INSERT INTO availability_rules (id, provider_id, day_of_week, start_time, end_time, is_available, interval_minutes)
                    VALUES (?, ?, ?, ?, ?, 1, 30)
                    """,
                    [(f"rule_{uuid4().hex[:10]}", *rule) for rule in rules],
                )
                conn.execute(
                    """
                    INSERT INTO provider_breaks (id, provider_id, name, day_of_week, start_time, end_time, is_recurring)
                    VALUES (?, ?, ?, ?, ?, ?, 1)
                    """,
                    (f"brk_{uuid4().hex[:10]}", "prov_3", "Team huddle", 3, "15:00", "15:30"),
                )
                conn.commit()
        logger.info("Seeded demo schedule data into %s", self.db_path)

    def _read(self, fn: Callable[[sqlite3.Connection], T], timeout: Optional[float] = None) -> T:
        last_error: Optional[sqlite3.OperationalError] = None
        for attempt in range(self.read_retries + 1):
            try:
                with self._connect(timeout) as conn:
                    return fn(conn)
            except sqlite3.OperationalError as exc:
                last_error = exc
                logger.warning("Schedule store read failed (attempt %s): %s", attempt + 1, exc)
        raise SchedulingInternalError("Schedule store unavailable") from last_error

    @contextmanager
    def transaction(self, timeout: Optional[float] = None) -> Iterator[sqlite3.Connection]:
        """Single write transaction; rolled back on any error."""
        with self._lock:
            conn = self._connect(timeout)
            try:
                conn.execute("BEGIN IMMEDIATE")
                yield conn
                conn.commit()
            except sqlite3.OperationalError as exc:
                conn.rollback()
                logger.exception("Schedule store write failed")
                raise SchedulingInternalError("Schedule store unavailable") from exc
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

    # Row mapping

    def _row_to_provider(self, row: sqlite3.Row) -> Provider:
        rating = row["rating"]
        return Provider(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            city=row["city"],
            timezone=row["timezone"] or settings.DEFAULT_TIMEZONE,
            latitude=row["latitude"],
            longitude=row["longitude"],
            rating=round(rating / 10.0, 1) if rating is not None else None,
            review_count=row["review_count"],
            status=row["status"],
            owner_user_id=row["owner_user_id"],
        )

    def _row_to_rule(self, row: sqlite3.Row) -> AvailabilityRule:
        return AvailabilityRule(
            id=row["id"],
            provider_id=row["provider_id"],
            day_of_week=row["day_of_week"],
            specific_date=row["specific_date"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            is_available=bool(row["is_available"]),
            interval_minutes=row["interval_minutes"] or settings.DEFAULT_SLOT_INTERVAL,
        )

    def _row_to_blocked(self, row: sqlite3.Row) -> BlockedRange:
        return BlockedRange(
            id=row["id"],
            provider_id=row["provider_id"],
            date=row["date"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            reason=row["reason"],
            block_type=row["block_type"],
            recurrent_id=row["recurrent_id"],
            appointment_id=row["appointment_id"],
        )

    def _row_to_break(self, row: sqlite3.Row) -> ProviderBreak:
        return ProviderBreak(
            id=row["id"],
            provider_id=row["provider_id"],
            name=row["name"],
            day_of_week=row["day_of_week"],
            date=row["date"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            is_recurring=bool(row["is_recurring"]),
        )

    def _row_to_appointment(self, row: sqlite3.Row) -> Appointment:
        try:
            service_ids = json.loads(row["service_ids_json"] or "[]")
        except json.JSONDecodeError:
            service_ids = []
        if not isinstance(service_ids, list) or not service_ids:
            service_ids = [row["service_id"]]
        return Appointment(
            id=row["id"],
            provider_id=row["provider_id"],
            client_id=row["client_id"],
            service_id=row["service_id"],
            service_ids=[str(item) for item in service_ids],
            date=row["date"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            status=row["status"],
            payment_status=row["payment_status"],
            notes=row["notes"],
            is_manually_created=bool(row["is_manually_created"]),
            created_at=row["created_at"],
        )

    # Validation helpers

    def _validate_window(self, start_time: str, end_time: str) -> None:
        if to_minutes(end_time, field="end_time") <= to_minutes(start_time, field="start_time"):
            raise SchedulingValidationError(
                "start_time must be before end_time",
                field="end_time",
                value=end_time,
            )

    def is_admin(self, user_id: str) -> bool:
        return user_id in settings.ADMIN_USER_IDS

    def assert_provider_manager(self, provider_id: str, actor_user_id: str) -> Provider:
        provider = self.get_provider(provider_id)
        if self.is_admin(actor_user_id):
            return provider
        if not provider.owner_user_id or provider.owner_user_id != actor_user_id:
            raise SchedulingPermissionError("Only the provider owner can manage this schedule")
        return provider

    # Catalog

    def get_provider(self, provider_id: str, timeout: Optional[float] = None) -> Provider:
        row = self._read(
            lambda conn: conn.execute("SELECT * FROM providers WHERE id = ?", (provider_id,)).fetchone(),
            timeout=timeout,
        )
        if not row:
            raise SchedulingNotFoundError("Provider not found", field="provider_id", value=provider_id)
        return self._row_to_provider(row)

    def get_provider_details(self, provider_id: str) -> ProviderDetails:
        provider = self.get_provider(provider_id)
        offerings = self.list_provider_offerings([provider_id]).get(provider_id, [])
        return ProviderDetails(provider=provider, services=offerings)

    def list_providers(self, q: Optional[str] = None, include_inactive: bool = False) -> List[Provider]:
        query = "SELECT * FROM providers WHERE 1 = 1"
        params: List[Any] = []
        if not include_inactive:
            query += " AND status = 'active'"
        if q and q.strip():
            query += " AND (LOWER(name) LIKE ? OR LOWER(description) LIKE ?)"
            needle = f"%{q.strip().lower()}%"
            params.extend([needle, needle])
        query += " ORDER BY id"
        rows = self._read(lambda conn: conn.execute(query, params).fetchall())
        return [self._row_to_provider(row) for row in rows]

    def list_provider_offerings(
        self, provider_ids: Optional[Sequence[str]] = None
    ) -> Dict[str, List[ProviderServiceOffering]]:
        query = """
            SELECT ps.provider_id, ps.service_id, ps.duration AS provider_duration, ps.price, ps.is_active,
                   st.name, st.category_id, st.duration AS template_duration
            FROM provider_services ps
            JOIN service_templates st ON st.id = ps.service_id
            WHERE ps.is_active = 1
        """
        params: List[Any] = []
        if provider_ids is not None:
            if not provider_ids:
                return {}
            query += f" AND ps.provider_id IN ({', '.join('?' for _ in provider_ids)})"
            params.extend(provider_ids)
        query += " ORDER BY ps.provider_id, ps.service_id"
        rows = self._read(lambda conn: conn.execute(query, params).fetchall())
        grouped: Dict[str, List[ProviderServiceOffering]] = {}
        for row in rows:
            grouped.setdefault(row["provider_id"], []).append(
                ProviderServiceOffering(
                    service_id=row["service_id"],
                    name=row["name"],
                    category_id=row["category_id"],
                    duration=row["provider_duration"] or row["template_duration"],
                    price=row["price"],
                    is_active=bool(row["is_active"]),
                )
            )
        return grouped

    def get_service_templates(self, service_ids: Sequence[str]) -> Dict[str, ServiceTemplate]:
        if not service_ids:
            return {}
        placeholders = ", ".join("?" for _ in service_ids)
        rows = self._read(
            lambda conn: conn.execute(
                f"SELECT * FROM service_templates WHERE id IN ({placeholders})",
                list(service_ids),
            ).fetchall()
        )
        return {
            row["id"]: ServiceTemplate(
                id=row["id"],
                name=row["name"],
                category_id=row["category_id"],
                duration=row["duration"],
            )
            for row in rows
        }

    def get_provider_service_durations(self, provider_id: str, service_ids: Sequence[str]) -> Dict[str, Optional[int]]:
        """Active offerings among ``service_ids``; the value is the provider override or None."""
        if not service_ids:
            return {}
        placeholders = ", ".join("?" for _ in service_ids)
        rows = self._read(
            lambda conn: conn.execute(
                f"""
                SELECT service_id, duration FROM provider_services
                WHERE provider_id = ? AND is_active = 1 AND service_id IN ({placeholders})
                """,
                [provider_id, *service_ids],
            ).fetchall()
        )
        return {row["service_id"]: int(row["duration"]) if row["duration"] else None for row in rows}

    def category_ids_for_niche(self, niche_id: str) -> Set[str]:
        rows = self._read(
            lambda conn: conn.execute("SELECT id FROM categories WHERE niche_id = ?", (niche_id,)).fetchall()
        )
        return {row["id"] for row in rows}

    def get_client_email(self, client_id: str) -> Optional[str]:
        row = self._read(lambda conn: conn.execute("SELECT email FROM clients WHERE id = ?", (client_id,)).fetchone())
        if not row:
            return None
        return row["email"] or None

    # Availability rules

    def list_rules(self, provider_id: str) -> List[AvailabilityRule]:
        rows = self._read(
            lambda conn: conn.execute(
                """
                SELECT * FROM availability_rules WHERE provider_id = ?
                ORDER BY specific_date IS NOT NULL, specific_date, day_of_week, start_time
                """,
                (provider_id,),
            ).fetchall()
        )
        return [self._row_to_rule(row) for row in rows]

    def _validate_rule(self, rule: AvailabilityRuleInput) -> None:
        if rule.specific_date is None and rule.day_of_week is None:
            raise SchedulingValidationError("Rule needs day_of_week or specific_date", field="day_of_week")
        if rule.specific_date is not None:
            parse_date(rule.specific_date, field="specific_date")
        self._validate_window(rule.start_time, rule.end_time)

    def replace_rules(
        self,
        provider_id: str,
        rules: Sequence[AvailabilityRuleInput],
        actor_user_id: str,
    ) -> List[AvailabilityRule]:
        """Swap a provider's whole rule set in one transaction."""
        self.assert_provider_manager(provider_id, actor_user_id)
        for rule in rules:
            self._validate_rule(rule)
        created = [
            AvailabilityRule(id=f"rule_{uuid4().hex[:10]}", provider_id=provider_id, **rule.model_dump())
            for rule in rules
        ]
        with self.transaction() as conn:
            conn.execute("DELETE FROM availability_rules WHERE provider_id = ?", (provider_id,))
            conn.executemany(
                """
                INSERT INTO availability_rules
                    (id, provider_id, day_of_week, specific_date, start_time, end_time, is_available, interval_minutes)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        rule.id,
                        rule.provider_id,
                        rule.day_of_week if rule.specific_date is None else None,
                        rule.specific_date,
                        rule.start_time,
                        rule.end_time,
                        1 if rule.is_available else 0,
                        rule.interval_minutes,
                    )
                    for rule in created
                ],
            )
        logger.info("Replaced availability rules provider_id=%s count=%s", provider_id, len(created))
        return created

    # Blocked ranges

    def list_blocked_ranges(self, provider_id: str, day: Optional[str] = None) -> List[BlockedRange]:
        query = "SELECT * FROM blocked_ranges WHERE provider_id = ?"
        params: List[Any] = [provider_id]
        if day:
            query += " AND date = ?"
            params.append(parse_date(day).isoformat())
        query += " ORDER BY date, start_time"
        rows = self._read(lambda conn: conn.execute(query, params).fetchall())
        return [self._row_to_blocked(row) for row in rows]

    def insert_blocked_range(self, conn: sqlite3.Connection, blocked: BlockedRange) -> None:
        conn.execute(
            """
            INSERT INTO blocked_ranges
                (id, provider_id, date, start_time, end_time, reason, block_type, recurrent_id, appointment_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                blocked.id,
                blocked.provider_id,
                blocked.date,
                blocked.start_time,
                blocked.end_time,
                blocked.reason,
                blocked.block_type,
                blocked.recurrent_id,
                blocked.appointment_id,
                _utcnow_iso(),
            ),
        )

    def create_blocked_range(
        self,
        provider_id: str,
        day: str,
        start_time: str,
        end_time: str,
        actor_user_id: str,
        reason: str = "",
        recurrent_id: Optional[str] = None,
    ) -> BlockedRange:
        self.assert_provider_manager(provider_id, actor_user_id)
        normalized_day = parse_date(day).isoformat()
        self._validate_window(start_time, end_time)
        blocked = BlockedRange(
            id=f"blk_{uuid4().hex[:10]}",
            provider_id=provider_id,
            date=normalized_day,
            start_time=start_time,
            end_time=end_time,
            reason=reason.strip(),
            block_type="manual",
            recurrent_id=recurrent_id,
        )
        with self.transaction() as conn:
            duplicate = conn.execute(
                """
                SELECT id FROM blocked_ranges
                WHERE provider_id = ? AND date = ? AND start_time = ? AND end_time = ?
                LIMIT 1
                """,
                (provider_id, normalized_day, start_time, end_time),
            ).fetchone()
            if duplicate:
                raise SchedulingConflictError(
                    "Time range is already blocked",
                    field="start_time",
                    value=start_time,
                    details={"blocked_range_id": duplicate["id"]},
                )
            self.insert_blocked_range(conn, blocked)
        return blocked

    def delete_blocked_range(self, blocked_id: str, actor_user_id: str) -> BlockedRange:
        row = self._read(lambda conn: conn.execute("SELECT * FROM blocked_ranges WHERE id = ?", (blocked_id,)).fetchone())
        if not row:
            raise SchedulingNotFoundError("Blocked range not found", field="blocked_range_id", value=blocked_id)
        blocked = self._row_to_blocked(row)
        self.assert_provider_manager(blocked.provider_id, actor_user_id)
        if blocked.block_type == "system":
            raise SchedulingConflictError(
                "Reservation blocks are released by canceling the appointment",
                field="blocked_range_id",
                value=blocked_id,
                details={"appointment_id": blocked.appointment_id},
            )
        with self.transaction() as conn:
            conn.execute("DELETE FROM blocked_ranges WHERE id = ?", (blocked_id,))
        return blocked

    def release_appointment_blocks(self, conn: sqlite3.Connection, appointment_id: str) -> int:
        cursor = conn.execute(
            "DELETE FROM blocked_ranges WHERE appointment_id = ? AND block_type = 'system'",
            (appointment_id,),
        )
        return cursor.rowcount

    # Breaks

    def list_breaks(self, provider_id: str) -> List[ProviderBreak]:
        rows = self._read(
            lambda conn: conn.execute(
                "SELECT * FROM provider_breaks WHERE provider_id = ? ORDER BY date, day_of_week, start_time",
                (provider_id,),
            ).fetchall()
        )
        return [self._row_to_break(row) for row in rows]

    def create_break(
        self,
        provider_id: str,
        actor_user_id: str,
        start_time: str,
        end_time: str,
        name: str = "Break",
        day_of_week: Optional[int] = None,
        day: Optional[str] = None,
    ) -> ProviderBreak:
        self.assert_provider_manager(provider_id, actor_user_id)
        if day is None and day_of_week is None:
            raise SchedulingValidationError("Break needs day_of_week or date", field="day_of_week")
        normalized_day = parse_date(day).isoformat() if day else None
        self._validate_window(start_time, end_time)
        item = ProviderBreak(
            id=f"brk_{uuid4().hex[:10]}",
            provider_id=provider_id,
            name=name.strip() or "Break",
            day_of_week=None if normalized_day else day_of_week,
            date=normalized_day,
            start_time=start_time,
            end_time=end_time,
            is_recurring=normalized_day is None,
        )
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO provider_breaks (id, provider_id, name, day_of_week, date, start_time, end_time, is_recurring)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id,
                    item.provider_id,
                    item.name,
                    item.day_of_week,
                    item.date,
                    item.start_time,
                    item.end_time,
                    1 if item.is_recurring else 0,
                ),
            )
        return item

    # Day snapshot

    def _load_day_facts(self, conn: sqlite3.Connection, provider_id: str, day: str) -> DayFacts:
        provider_row = conn.execute("SELECT * FROM providers WHERE id = ?", (provider_id,)).fetchone()
        if not provider_row:
            raise SchedulingNotFoundError("Provider not found", field="provider_id", value=provider_id)
        rules = conn.execute(
            """
            SELECT * FROM availability_rules
            WHERE provider_id = ? AND (specific_date = ? OR specific_date IS NULL)
            ORDER BY start_time
            """,
            (provider_id, day),
        ).fetchall()
        blocked = conn.execute(
            "SELECT * FROM blocked_ranges WHERE provider_id = ? AND date = ? ORDER BY start_time",
            (provider_id, day),
        ).fetchall()
        breaks = conn.execute(
            """
            SELECT * FROM provider_breaks
            WHERE provider_id = ? AND (date = ? OR date IS NULL)
            ORDER BY start_time
            """,
            (provider_id, day),
        ).fetchall()
        appointments = conn.execute(
            f"""
            SELECT * FROM appointments
            WHERE provider_id = ? AND date = ? AND {ACTIVE_APPOINTMENT_FILTER}
            ORDER BY start_time
            """,
            (provider_id, day),
        ).fetchall()
        return DayFacts(
            provider=self._row_to_provider(provider_row),
            rules=[self._row_to_rule(row) for row in rules],
            blocked_ranges=[self._row_to_blocked(row) for row in blocked],
            breaks=[self._row_to_break(row) for row in breaks],
            appointments=[self._row_to_appointment(row) for row in appointments],
        )

    def load_day_facts(
        self,
        provider_id: str,
        day: str,
        conn: Optional[sqlite3.Connection] = None,
        timeout: Optional[float] = None,
    ) -> DayFacts:
        """Consistent snapshot of one provider's day; inside ``conn`` when given."""
        normalized_day = parse_date(day).isoformat()
        if conn is not None:
            return self._load_day_facts(conn, provider_id, normalized_day)
        return self._read(lambda read_conn: self._load_day_facts(read_conn, provider_id, normalized_day), timeout=timeout)

    # Appointments

    def list_appointments(
        self,
        provider_id: Optional[str] = None,
        client_id: Optional[str] = None,
        day: Optional[str] = None,
    ) -> List[Appointment]:
        query = "SELECT * FROM appointments WHERE 1 = 1"
        params: List[Any] = []
        if provider_id:
            query += " AND provider_id = ?"
            params.append(provider_id)
        if client_id:
            query += " AND client_id = ?"
            params.append(client_id)
        if day:
            query += " AND date = ?"
            params.append(parse_date(day).isoformat())
        query += " ORDER BY date, start_time, created_at"
        rows = self._read(lambda conn: conn.execute(query, params).fetchall())
        return [self._row_to_appointment(row) for row in rows]

    def get_appointment(self, appointment_id: str, conn: Optional[sqlite3.Connection] = None) -> Appointment:
        if conn is not None:
            row = conn.execute("SELECT * FROM appointments WHERE id = ?", (appointment_id,)).fetchone()
        else:
            row = self._read(
                lambda read_conn: read_conn.execute("SELECT * FROM appointments WHERE id = ?", (appointment_id,)).fetchone()
            )
        if not row:
            raise SchedulingNotFoundError("Appointment not found", field="appointment_id", value=appointment_id)
        return self._row_to_appointment(row)

    def insert_appointment(self, conn: sqlite3.Connection, appointment: Appointment, actor_user_id: str) -> None:
        conn.execute(
            """
            INSERT INTO appointments
                (id, provider_id, client_id, service_id, service_ids_json, date, start_time, end_time,
                 status, payment_status, notes, is_manually_created, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                appointment.id,
                appointment.provider_id,
                appointment.client_id,
                appointment.service_id,
                json.dumps(appointment.service_ids),
                appointment.date,
                appointment.start_time,
                appointment.end_time,
                appointment.status,
                appointment.payment_status,
                appointment.notes,
                1 if appointment.is_manually_created else 0,
                appointment.created_at,
            ),
        )
        self._record_status_change(conn, appointment.id, actor_user_id, "none", appointment.status, "appointment created")

    def set_appointment_status(
        self,
        conn: sqlite3.Connection,
        appointment_id: str,
        from_status: str,
        to_status: str,
        actor_user_id: str,
        note: str = "",
    ) -> None:
        conn.execute("UPDATE appointments SET status = ? WHERE id = ?", (to_status, appointment_id))
        self._record_status_change(conn, appointment_id, actor_user_id, from_status, to_status, note)

    def _record_status_change(
        self,
        conn: sqlite3.Connection,
        appointment_id: str,
        actor_user_id: str,
        from_status: str,
        to_status: str,
        note: str,
    ) -> None:
        conn.execute(
            """
            INSERT INTO appointment_status_history (id, appointment_id, actor_user_id, from_status, to_status, note, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (f"ash_{uuid4().hex[:10]}", appointment_id, actor_user_id, from_status, to_status, note, _utcnow_iso()),
        )

    def list_status_history(self, appointment_id: str) -> List[AppointmentStatusChange]:
        rows = self._read(
            lambda conn: conn.execute(
                "SELECT * FROM appointment_status_history WHERE appointment_id = ? ORDER BY created_at, rowid",
                (appointment_id,),
            ).fetchall()
        )
        return [AppointmentStatusChange(**dict(row)) for row in rows]


schedule_store = ScheduleStore(
    db_path=settings.SCHEDULE_DB_PATH,
    timeout=settings.SCHEDULE_DB_TIMEOUT_SECONDS,
    read_retries=settings.SCHEDULE_DB_READ_RETRIES,
    seed_demo=settings.SCHEDULE_SEED_DEMO,
)
