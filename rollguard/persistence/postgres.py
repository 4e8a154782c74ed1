"""
PostgreSQL roll store.
"""
from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from typing import Optional, List, Iterable, Iterator, Any

import psycopg2
from psycopg2.extras import Json, RealDictCursor, execute_values
from psycopg2.pool import ThreadedConnectionPool

from ..config import DBConfig
from ..exceptions import ConfigurationError, DataPersistenceError, NotFoundError
from ..logger import get_logger
from ..models import (
    Voter,
    AddressComponents,
    AddressCacheEntry,
    GeocodeResult,
    NameFrequency,
    ClusterFlag,
    ClusterExample,
    ReviewTask,
    RevisionBatch,
    RevisionFlag,
    DeathRecord,
    AuditLogEntry,
    HashChainBlock,
    ChainVerification,
)
from ..models.states import ChainHealth
from .repository import RollStore

logger = get_logger(__name__)

# Advisory lock key for the audit chain head. Appends take it per transaction,
# snapshot transactions hold it for the session from before they begin.
AUDIT_CHAIN_LOCK_KEY = 7_204_113

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS voters (
        voter_id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        surname TEXT,
        father_name TEXT,
        mother_name TEXT,
        guardian_name TEXT,
        date_of_birth DATE,
        gender TEXT,
        national_id TEXT,
        email TEXT,
        mobile_number TEXT,

        -- Address
        house_number TEXT,
        street TEXT,
        village_city TEXT,
        district TEXT,
        state TEXT,
        pin_code TEXT,
        normalized_address TEXT,
        address_hash CHAR(64),

        -- Scores
        address_quality_score NUMERIC(4, 2),
        name_quality_score NUMERIC(4, 2),
        phonetic_code TEXT,
        validation_flags TEXT[] DEFAULT '{}',

        -- Lifecycle
        registration_status TEXT NOT NULL DEFAULT 'pending_review',
        review_reason TEXT,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP WITH TIME ZONE,
        updated_at TIMESTAMP WITH TIME ZONE
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_voters_address_hash ON voters(address_hash);",
    "CREATE INDEX IF NOT EXISTS idx_voters_national_id ON voters(national_id);",
    "CREATE INDEX IF NOT EXISTS idx_voters_district ON voters(district);",
    """
    CREATE TABLE IF NOT EXISTS address_validation_cache (
        address_hash CHAR(64) PRIMARY KEY,
        normalized_address TEXT NOT NULL,
        latitude DOUBLE PRECISION,
        longitude DOUBLE PRECISION,
        geocode_confidence NUMERIC(4, 2),
        geocode_provider TEXT,
        formatted_address TEXT,
        quality_score NUMERIC(4, 2),
        cached_at TIMESTAMP WITH TIME ZONE NOT NULL,
        expires_at TIMESTAMP WITH TIME ZONE NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS name_frequency_lookup (
        name_token TEXT NOT NULL,
        name_type TEXT NOT NULL,
        frequency_score NUMERIC(4, 3) NOT NULL,
        region TEXT DEFAULT 'all',
        language TEXT DEFAULT 'en',
        PRIMARY KEY (name_token, name_type)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS address_cluster_flags (
        address_hash CHAR(64) PRIMARY KEY,
        normalized_address TEXT,
        district TEXT,
        state TEXT,
        voter_count INTEGER NOT NULL,
        risk_score NUMERIC(4, 2) NOT NULL,
        risk_level TEXT NOT NULL,
        is_suspicious BOOLEAN NOT NULL DEFAULT FALSE,
        surname_diversity_score NUMERIC(4, 2),
        dob_clustering_score NUMERIC(4, 2),
        registration_span_days DOUBLE PRECISION,
        top_examples JSONB DEFAULT '[]',
        status TEXT NOT NULL DEFAULT 'open',
        assigned_to TEXT,
        assigned_role TEXT,
        resolved_by TEXT,
        resolution_notes TEXT,
        created_at TIMESTAMP WITH TIME ZONE,
        updated_at TIMESTAMP WITH TIME ZONE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS review_tasks (
        task_id TEXT PRIMARY KEY,
        task_type TEXT NOT NULL,
        voter_id TEXT,
        priority TEXT NOT NULL DEFAULT 'medium',
        status TEXT NOT NULL DEFAULT 'open',
        assigned_to TEXT,
        assigned_role TEXT,
        evidence JSONB DEFAULT '{}',
        resolution_action TEXT,
        resolution_notes TEXT,
        resolved_by TEXT,
        resolved_at TIMESTAMP WITH TIME ZONE,
        created_at TIMESTAMP WITH TIME ZONE,
        updated_at TIMESTAMP WITH TIME ZONE,
        created_seq BIGSERIAL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_review_tasks_status ON review_tasks(status);",
    """
    CREATE TABLE IF NOT EXISTS revision_batches (
        batch_id TEXT PRIMARY KEY,
        region TEXT NOT NULL,
        district TEXT,
        state TEXT,
        start_date DATE NOT NULL,
        end_date DATE NOT NULL,
        status TEXT NOT NULL DEFAULT 'draft',
        integrity_digest CHAR(64) NOT NULL,
        created_by TEXT,
        created_at TIMESTAMP WITH TIME ZONE,
        committed_at TIMESTAMP WITH TIME ZONE,
        created_seq BIGSERIAL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS revision_flags (
        flag_id TEXT PRIMARY KEY,
        batch_id TEXT NOT NULL REFERENCES revision_batches(batch_id),
        voter_id TEXT NOT NULL,
        flag_type TEXT NOT NULL,
        reason TEXT,
        score NUMERIC(4, 2),
        status TEXT NOT NULL DEFAULT 'pending',
        details JSONB DEFAULT '{}',
        created_at TIMESTAMP WITH TIME ZONE,
        resolved_at TIMESTAMP WITH TIME ZONE,
        resolved_by TEXT,
        created_seq BIGSERIAL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_revision_flags_batch ON revision_flags(batch_id);",
    """
    CREATE TABLE IF NOT EXISTS death_records (
        national_id TEXT PRIMARY KEY,
        death_date DATE NOT NULL,
        source TEXT
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        entry_id TEXT PRIMARY KEY,
        sequence BIGSERIAL,
        recorded_at TIMESTAMP WITH TIME ZONE NOT NULL,
        action TEXT NOT NULL,
        entity_type TEXT,
        entity_id TEXT,
        actor TEXT,
        details JSONB DEFAULT '{}',
        previous_hash CHAR(64),
        entry_hash CHAR(64) NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_audit_log_order ON audit_log(recorded_at, sequence);",
    """
    CREATE TABLE IF NOT EXISTS hash_chain_runs (
        run_id TEXT PRIMARY KEY,
        total_blocks INTEGER NOT NULL,
        invalid_blocks INTEGER NOT NULL,
        chain_health TEXT NOT NULL,
        first_invalid_block TEXT,
        verified_at TIMESTAMP WITH TIME ZONE NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS hash_chain_verification (
        run_id TEXT NOT NULL REFERENCES hash_chain_runs(run_id),
        block_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        previous_hash CHAR(64),
        stored_hash CHAR(64),
        computed_hash CHAR(64) NOT NULL,
        is_valid BOOLEAN NOT NULL,
        verified_at TIMESTAMP WITH TIME ZONE NOT NULL,
        verified_by TEXT,
        PRIMARY KEY (run_id, block_id)
    );
    """,
]

_VOTER_COLUMNS = (
    "voter_id", "name", "surname", "father_name", "mother_name", "guardian_name",
    "date_of_birth", "gender", "national_id", "email", "mobile_number",
    "house_number", "street", "village_city", "district", "state", "pin_code",
    "normalized_address", "address_hash", "address_quality_score", "name_quality_score",
    "phonetic_code", "validation_flags", "registration_status", "review_reason",
    "is_active", "created_at", "updated_at",
)


def _float(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


class PostgresRollStore(RollStore):
    """
    PostgreSQL implementation of the roll store.

    Handles:
    - Connection pooling (one connection bound to the thread per transaction)
    - Schema initialization
    - Row locking for batches, tasks, flags and the audit chain head
    """

    def __init__(self, config: DBConfig):
        """
        Initialize store.

        Args:
            config: Database configuration
        """
        if not config.is_configured:
            raise ConfigurationError("Database host, name and user must be set", config_key="DB_HOST")
        if config.pool_min > config.pool_max:
            raise ConfigurationError("DB_POOL_MIN exceeds DB_POOL_MAX", config_key="DB_POOL_MIN")
        self.config = config
        self._pool: Optional[ThreadedConnectionPool] = None
        self._pool_lock = threading.Lock()
        self._local = threading.local()

    def _get_pool(self) -> ThreadedConnectionPool:
        """Get or create the connection pool."""
        with self._pool_lock:
            if self._pool is None or self._pool.closed:
                try:
                    self._pool = ThreadedConnectionPool(
                        self.config.pool_min,
                        self.config.pool_max,
                        host=self.config.host,
                        port=self.config.port,
                        dbname=self.config.name,
                        user=self.config.user,
                        password=self.config.password,
                        sslmode=self.config.ssl_mode,
                        options=f"-c search_path={self.config.schema}",
                    )
                except psycopg2.Error as e:
                    logger.error(f"Failed to connect to PostgreSQL: {e}")
                    raise DataPersistenceError(f"Failed to connect to PostgreSQL: {e}", operation="connect") from e
            return self._pool

    def close(self) -> None:
        with self._pool_lock:
            if self._pool is not None and not self._pool.closed:
                self._pool.closeall()
            self._pool = None

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self, snapshot: bool = False) -> Iterator[None]:
        if getattr(self._local, "conn", None) is not None:
            self._local.depth += 1
            try:
                yield
            finally:
                self._local.depth -= 1
            return

        pool = self._get_pool()
        conn = pool.getconn()
        self._local.conn = conn
        self._local.depth = 1
        chain_locked = False
        try:
            if snapshot:
                # A repeatable read snapshot is fixed by its first statement,
                # so the audit chain lock must be held before the transaction
                # opens or an append would chain onto a stale head.
                conn.autocommit = True
                with conn.cursor() as cur:
                    cur.execute("SELECT pg_advisory_lock(%s)", (AUDIT_CHAIN_LOCK_KEY,))
                chain_locked = True
            conn.autocommit = False
            if snapshot:
                with conn.cursor() as cur:
                    cur.execute("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ")
            yield
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            logger.error(f"Transaction rolled back: {e}")
            raise DataPersistenceError(str(e), operation="transaction") from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            self._local.conn = None
            self._local.depth = 0
            released = self._unlock_audit_chain(conn) if chain_locked else True
            # Closing the session drops a lock that could not be released.
            pool.putconn(conn, close=not released)

    def _unlock_audit_chain(self, conn) -> bool:
        try:
            conn.autocommit = True
            with conn.cursor() as cur:
                cur.execute("SELECT pg_advisory_unlock(%s)", (AUDIT_CHAIN_LOCK_KEY,))
            return True
        except psycopg2.Error as e:
            logger.error(f"Failed to release audit chain lock: {e}")
            return False

    @contextmanager
    def _cursor(self) -> Iterator[RealDictCursor]:
        with self.transaction():
            with self._local.conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield cur

    def init_db(self) -> None:
        """Initialize database schema."""
        with self._cursor() as cur:
            for statement in SCHEMA_STATEMENTS:
                cur.execute(statement)
        logger.info("Database schema initialized")

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    # ------------------------------------------------------------------
    # Voters
    # ------------------------------------------------------------------

    @staticmethod
    def _voter_values(voter: Voter) -> tuple:
        address = voter.address
        return (
            voter.voter_id, voter.name, voter.surname, voter.father_name, voter.mother_name,
            voter.guardian_name, voter.date_of_birth, voter.gender, voter.national_id,
            voter.email, voter.mobile_number,
            address.house_number, address.street, address.village_city, address.district,
            address.state, address.pin_code,
            voter.normalized_address, voter.address_hash or None,
            voter.address_quality_score, voter.name_quality_score, voter.phonetic_code,
            sorted(voter.validation_flags), voter.registration_status.value, voter.review_reason,
            voter.is_active, voter.created_at, voter.updated_at,
        )

    @staticmethod
    def _row_to_voter(row: dict) -> Voter:
        return Voter(
            voter_id=row["voter_id"],
            name=row["name"],
            surname=row["surname"] or "",
            father_name=row["father_name"] or "",
            mother_name=row["mother_name"] or "",
            guardian_name=row["guardian_name"] or "",
            date_of_birth=row["date_of_birth"],
            gender=row["gender"] or "",
            national_id=row["national_id"] or "",
            email=row["email"] or "",
            mobile_number=row["mobile_number"] or "",
            address=AddressComponents(
                house_number=row["house_number"] or "",
                street=row["street"] or "",
                village_city=row["village_city"] or "",
                district=row["district"] or "",
                state=row["state"] or "",
                pin_code=row["pin_code"] or "",
            ),
            normalized_address=row["normalized_address"] or "",
            address_hash=(row["address_hash"] or "").strip(),
            address_quality_score=_float(row["address_quality_score"]),
            name_quality_score=_float(row["name_quality_score"]),
            phonetic_code=row["phonetic_code"] or "",
            validation_flags=set(row["validation_flags"] or []),
            registration_status=row["registration_status"],
            review_reason=row["review_reason"] or "",
            is_active=row["is_active"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def save_voter(self, voter: Voter) -> Voter:
        if not voter.voter_id:
            voter.voter_id = self._new_id()
        placeholders = ", ".join(["%s"] * len(_VOTER_COLUMNS))
        with self._cursor() as cur:
            cur.execute(
                f"INSERT INTO voters ({', '.join(_VOTER_COLUMNS)}) VALUES ({placeholders})",
                self._voter_values(voter),
            )
        return voter

    def get_voter(self, voter_id: str, for_update: bool = False) -> Optional[Voter]:
        query = "SELECT * FROM voters WHERE voter_id = %s"
        if for_update:
            query += " FOR UPDATE"
        with self._cursor() as cur:
            cur.execute(query, (str(voter_id),))
            row = cur.fetchone()
        return self._row_to_voter(row) if row else None

    def update_voter(self, voter: Voter) -> None:
        assignments = ", ".join(f"{col} = %s" for col in _VOTER_COLUMNS[1:])
        values = self._voter_values(voter)
        with self._cursor() as cur:
            cur.execute(
                f"UPDATE voters SET {assignments} WHERE voter_id = %s",
                values[1:] + (voter.voter_id,),
            )
            if cur.rowcount == 0:
                raise NotFoundError("voter", voter.voter_id)

    def list_voters(
        self,
        active_only: bool = False,
        district: Optional[str] = None,
        state: Optional[str] = None,
        with_address_hash: bool = False,
    ) -> List[Voter]:
        clauses, params = [], []
        if active_only:
            clauses.append("is_active = TRUE")
        if district:
            clauses.append("LOWER(district) = LOWER(%s)")
            params.append(district)
        if state:
            clauses.append("LOWER(state) = LOWER(%s)")
            params.append(state)
        if with_address_hash:
            clauses.append("address_hash IS NOT NULL")
        query = "SELECT * FROM voters"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY voter_id"
        with self._cursor() as cur:
            cur.execute(query, params)
            return [self._row_to_voter(row) for row in cur.fetchall()]

    # ------------------------------------------------------------------
    # Address validation cache
    # ------------------------------------------------------------------

    def get_address_cache(self, address_hash: str) -> Optional[AddressCacheEntry]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM address_validation_cache WHERE address_hash = %s", (address_hash,))
            row = cur.fetchone()
        if not row:
            return None
        return AddressCacheEntry(
            address_hash=row["address_hash"].strip(),
            normalized_address=row["normalized_address"],
            geocode=GeocodeResult(
                latitude=row["latitude"],
                longitude=row["longitude"],
                confidence=_float(row["geocode_confidence"]) or 0.0,
                provider=row["geocode_provider"] or "",
                formatted_address=row["formatted_address"] or "",
            ),
            quality_score=_float(row["quality_score"]) or 0.0,
            cached_at=row["cached_at"],
            expires_at=row["expires_at"],
        )

    def put_address_cache(self, entry: AddressCacheEntry) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO address_validation_cache (
                    address_hash, normalized_address, latitude, longitude,
                    geocode_confidence, geocode_provider, formatted_address,
                    quality_score, cached_at, expires_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (address_hash) DO UPDATE SET
                    normalized_address = EXCLUDED.normalized_address,
                    latitude = EXCLUDED.latitude,
                    longitude = EXCLUDED.longitude,
                    geocode_confidence = EXCLUDED.geocode_confidence,
                    geocode_provider = EXCLUDED.geocode_provider,
                    formatted_address = EXCLUDED.formatted_address,
                    quality_score = EXCLUDED.quality_score,
                    cached_at = EXCLUDED.cached_at,
                    expires_at = EXCLUDED.expires_at
                """,
                (
                    entry.address_hash, entry.normalized_address,
                    entry.geocode.latitude, entry.geocode.longitude,
                    entry.geocode.confidence, entry.geocode.provider, entry.geocode.formatted_address,
                    entry.quality_score, entry.cached_at, entry.expires_at,
                ),
            )

    # ------------------------------------------------------------------
    # Name frequency lookup
    # ------------------------------------------------------------------

    def get_name_frequency(self, name_token: str, name_type: str) -> Optional[NameFrequency]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM name_frequency_lookup WHERE name_token = %s AND name_type = %s",
                (name_token.lower(), name_type),
            )
            row = cur.fetchone()
        if not row:
            return None
        return NameFrequency(
            name_token=row["name_token"],
            name_type=row["name_type"],
            frequency_score=float(row["frequency_score"]),
            region=row["region"] or "all",
            language=row["language"] or "en",
        )

    def list_name_tokens(self, name_type: str) -> List[str]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT name_token FROM name_frequency_lookup WHERE name_type = %s ORDER BY name_token",
                (name_type,),
            )
            return [row["name_token"] for row in cur.fetchall()]

    def upsert_name_frequencies(self, rows: Iterable[NameFrequency]) -> int:
        values = [
            (r.name_token, r.name_type, r.frequency_score, r.region, r.language) for r in rows
        ]
        if not values:
            return 0
        with self._cursor() as cur:
            execute_values(
                cur,
                """
                INSERT INTO name_frequency_lookup (name_token, name_type, frequency_score, region, language)
                VALUES %s
                ON CONFLICT (name_token, name_type) DO UPDATE SET
                    frequency_score = EXCLUDED.frequency_score,
                    region = EXCLUDED.region,
                    language = EXCLUDED.language
                """,
                values,
            )
        return len(values)

    # ------------------------------------------------------------------
    # Address cluster flags
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_cluster_flag(row: dict) -> ClusterFlag:
        return ClusterFlag(
            address_hash=row["address_hash"].strip(),
            normalized_address=row["normalized_address"] or "",
            district=row["district"] or "",
            state=row["state"] or "",
            voter_count=row["voter_count"],
            risk_score=float(row["risk_score"]),
            risk_level=row["risk_level"],
            is_suspicious=row["is_suspicious"],
            surname_diversity_score=_float(row["surname_diversity_score"]),
            dob_clustering_score=_float(row["dob_clustering_score"]),
            registration_span_days=row["registration_span_days"],
            top_examples=[ClusterExample.from_dict(e) for e in (row["top_examples"] or [])],
            status=row["status"],
            assigned_to=row["assigned_to"],
            assigned_role=row["assigned_role"],
            resolved_by=row["resolved_by"],
            resolution_notes=row["resolution_notes"] or "",
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def get_cluster_flag(self, address_hash: str, for_update: bool = False) -> Optional[ClusterFlag]:
        query = "SELECT * FROM address_cluster_flags WHERE address_hash = %s"
        if for_update:
            query += " FOR UPDATE"
        with self._cursor() as cur:
            cur.execute(query, (address_hash,))
            row = cur.fetchone()
        return self._row_to_cluster_flag(row) if row else None

    def upsert_cluster_flag(self, flag: ClusterFlag) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO address_cluster_flags (
                    address_hash, normalized_address, district, state, voter_count,
                    risk_score, risk_level, is_suspicious, surname_diversity_score,
                    dob_clustering_score, registration_span_days, top_examples, status,
                    assigned_to, assigned_role, resolved_by, resolution_notes,
                    created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (address_hash) DO UPDATE SET
                    normalized_address = EXCLUDED.normalized_address,
                    district = EXCLUDED.district,
                    state = EXCLUDED.state,
                    voter_count = EXCLUDED.voter_count,
                    risk_score = EXCLUDED.risk_score,
                    risk_level = EXCLUDED.risk_level,
                    is_suspicious = EXCLUDED.is_suspicious,
                    surname_diversity_score = EXCLUDED.surname_diversity_score,
                    dob_clustering_score = EXCLUDED.dob_clustering_score,
                    registration_span_days = EXCLUDED.registration_span_days,
                    top_examples = EXCLUDED.top_examples,
                    status = EXCLUDED.status,
                    assigned_to = EXCLUDED.assigned_to,
                    assigned_role = EXCLUDED.assigned_role,
                    resolved_by = EXCLUDED.resolved_by,
                    resolution_notes = EXCLUDED.resolution_notes,
                    updated_at = EXCLUDED.updated_at
                RETURNING (xmax = 0) AS inserted
                """,
                (
                    flag.address_hash, flag.normalized_address, flag.district, flag.state,
                    flag.voter_count, flag.risk_score, flag.risk_level.value, flag.is_suspicious,
                    flag.surname_diversity_score, flag.dob_clustering_score,
                    flag.registration_span_days,
                    Json([e.to_dict() for e in flag.top_examples]),
                    flag.status.value, flag.assigned_to, flag.assigned_role, flag.resolved_by,
                    flag.resolution_notes, flag.created_at, flag.updated_at,
                ),
            )
            return bool(cur.fetchone()["inserted"])

    def list_cluster_flags(
        self,
        status: Optional[str] = None,
        risk_level: Optional[str] = None,
        district: Optional[str] = None,
        suspicious_only: bool = False,
        limit: Optional[int] = None,
    ) -> List[ClusterFlag]:
        clauses, params = [], []
        if status:
            clauses.append("status = %s")
            params.append(status)
        if risk_level:
            clauses.append("risk_level = %s")
            params.append(risk_level)
        if district:
            clauses.append("LOWER(district) = LOWER(%s)")
            params.append(district)
        if suspicious_only:
            clauses.append("is_suspicious = TRUE")
        query = "SELECT * FROM address_cluster_flags"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += """
            ORDER BY CASE risk_level
                WHEN 'critical' THEN 3 WHEN 'high' THEN 2 WHEN 'medium' THEN 1 ELSE 0 END DESC,
                risk_score DESC, voter_count DESC, address_hash
        """
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)
        with self._cursor() as cur:
            cur.execute(query, params)
            return [self._row_to_cluster_flag(row) for row in cur.fetchall()]

    # ------------------------------------------------------------------
    # Review tasks
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_task(row: dict) -> ReviewTask:
        return ReviewTask(
            task_id=row["task_id"],
            task_type=row["task_type"],
            voter_id=row["voter_id"],
            priority=row["priority"],
            status=row["status"],
            assigned_to=row["assigned_to"],
            assigned_role=row["assigned_role"],
            evidence=row["evidence"] or {},
            resolution_action=row["resolution_action"],
            resolution_notes=row["resolution_notes"] or "",
            resolved_by=row["resolved_by"],
            resolved_at=row["resolved_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create_review_task(self, task: ReviewTask) -> ReviewTask:
        if not task.task_id:
            task.task_id = self._new_id()
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO review_tasks (
                    task_id, task_type, voter_id, priority, status, assigned_to,
                    assigned_role, evidence, created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    task.task_id, task.task_type.value, task.voter_id, task.priority.value,
                    task.status.value, task.assigned_to, task.assigned_role,
                    Json(task.evidence.to_dict()), task.created_at, task.updated_at,
                ),
            )
        return task

    def get_review_task(self, task_id: str, for_update: bool = False) -> Optional[ReviewTask]:
        query = "SELECT * FROM review_tasks WHERE task_id = %s"
        if for_update:
            query += " FOR UPDATE"
        with self._cursor() as cur:
            cur.execute(query, (str(task_id),))
            row = cur.fetchone()
        return self._row_to_task(row) if row else None

    def update_review_task(self, task: ReviewTask) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE review_tasks SET
                    priority = %s, status = %s, assigned_to = %s, assigned_role = %s,
                    evidence = %s, resolution_action = %s, resolution_notes = %s,
                    resolved_by = %s, resolved_at = %s, updated_at = %s
                WHERE task_id = %s
                """,
                (
                    task.priority.value, task.status.value, task.assigned_to, task.assigned_role,
                    Json(task.evidence.to_dict()),
                    task.resolution_action.value if task.resolution_action else None,
                    task.resolution_notes, task.resolved_by, task.resolved_at, task.updated_at,
                    task.task_id,
                ),
            )
            if cur.rowcount == 0:
                raise NotFoundError("review_task", task.task_id)

    def list_review_tasks(
        self,
        status: Optional[str] = None,
        task_type: Optional[str] = None,
        assigned_to: Optional[str] = None,
        assigned_role: Optional[str] = None,
        priority: Optional[str] = None,
        voter_id: Optional[str] = None,
    ) -> List[ReviewTask]:
        filters = {
            "status": status,
            "task_type": task_type,
            "assigned_to": assigned_to,
            "assigned_role": assigned_role,
            "priority": priority,
            "voter_id": voter_id,
        }
        clauses = [f"{column} = %s" for column, value in filters.items() if value is not None]
        params = [value for value in filters.values() if value is not None]
        query = "SELECT * FROM review_tasks"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_seq DESC"
        with self._cursor() as cur:
            cur.execute(query, params)
            return [self._row_to_task(row) for row in cur.fetchall()]

    # ------------------------------------------------------------------
    # Revision batches
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_batch(row: dict) -> RevisionBatch:
        return RevisionBatch(
            batch_id=row["batch_id"],
            region=row["region"],
            district=row["district"],
            state=row["state"],
            start_date=row["start_date"],
            end_date=row["end_date"],
            status=row["status"],
            integrity_digest=row["integrity_digest"].strip(),
            created_by=row["created_by"],
            created_at=row["created_at"],
            committed_at=row["committed_at"],
        )

    def create_batch(self, batch: RevisionBatch) -> RevisionBatch:
        if not batch.batch_id:
            batch.batch_id = self._new_id()
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO revision_batches (
                    batch_id, region, district, state, start_date, end_date, status,
                    integrity_digest, created_by, created_at, committed_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    batch.batch_id, batch.region, batch.district, batch.state, batch.start_date,
                    batch.end_date, batch.status.value, batch.integrity_digest, batch.created_by,
                    batch.created_at, batch.committed_at,
                ),
            )
        return batch

    def get_batch(self, batch_id: str, for_update: bool = False) -> Optional[RevisionBatch]:
        query = "SELECT * FROM revision_batches WHERE batch_id = %s"
        if for_update:
            query += " FOR UPDATE"
        with self._cursor() as cur:
            cur.execute(query, (str(batch_id),))
            row = cur.fetchone()
        return self._row_to_batch(row) if row else None

    def update_batch(self, batch: RevisionBatch) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE revision_batches SET status = %s, committed_at = %s WHERE batch_id = %s",
                (batch.status.value, batch.committed_at, batch.batch_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError("revision_batch", batch.batch_id)

    def list_batches(
        self,
        status: Optional[str] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[RevisionBatch]:
        query = "SELECT * FROM revision_batches"
        params: list = []
        if status:
            query += " WHERE status = %s"
            params.append(status)
        query += " ORDER BY created_seq DESC"
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)
        query += " OFFSET %s"
        params.append(offset)
        with self._cursor() as cur:
            cur.execute(query, params)
            return [self._row_to_batch(row) for row in cur.fetchall()]

    def count_batches(self, status: Optional[str] = None) -> int:
        with self._cursor() as cur:
            if status:
                cur.execute("SELECT COUNT(*) AS total FROM revision_batches WHERE status = %s", (status,))
            else:
                cur.execute("SELECT COUNT(*) AS total FROM revision_batches")
            return int(cur.fetchone()["total"])

    @staticmethod
    def _row_to_flag(row: dict) -> RevisionFlag:
        return RevisionFlag(
            flag_id=row["flag_id"],
            batch_id=row["batch_id"],
            voter_id=row["voter_id"],
            flag_type=row["flag_type"],
            reason=row["reason"] or "",
            score=float(row["score"]),
            status=row["status"],
            details=row["details"] or {},
            created_at=row["created_at"],
            resolved_at=row["resolved_at"],
            resolved_by=row["resolved_by"],
        )

    def create_revision_flag(self, flag: RevisionFlag) -> RevisionFlag:
        if not flag.flag_id:
            flag.flag_id = self._new_id()
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO revision_flags (
                    flag_id, batch_id, voter_id, flag_type, reason, score, status, details, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    flag.flag_id, flag.batch_id, flag.voter_id, flag.flag_type.value, flag.reason,
                    flag.score, flag.status.value, Json(flag.details.to_dict()), flag.created_at,
                ),
            )
        return flag

    def get_revision_flag(self, flag_id: str, for_update: bool = False) -> Optional[RevisionFlag]:
        query = "SELECT * FROM revision_flags WHERE flag_id = %s"
        if for_update:
            query += " FOR UPDATE"
        with self._cursor() as cur:
            cur.execute(query, (str(flag_id),))
            row = cur.fetchone()
        return self._row_to_flag(row) if row else None

    def update_revision_flag(self, flag: RevisionFlag) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE revision_flags SET status = %s, resolved_at = %s, resolved_by = %s
                WHERE flag_id = %s
                """,
                (flag.status.value, flag.resolved_at, flag.resolved_by, flag.flag_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError("revision_flag", flag.flag_id)

    def list_revision_flags(self, batch_id: str) -> List[RevisionFlag]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM revision_flags WHERE batch_id = %s ORDER BY created_seq", (batch_id,))
            return [self._row_to_flag(row) for row in cur.fetchall()]

    # ------------------------------------------------------------------
    # Death registry
    # ------------------------------------------------------------------

    def upsert_death_records(self, records: Iterable[DeathRecord]) -> int:
        values = [(r.national_id, r.death_date, r.source) for r in records]
        if not values:
            return 0
        with self._cursor() as cur:
            execute_values(
                cur,
                """
                INSERT INTO death_records (national_id, death_date, source) VALUES %s
                ON CONFLICT (national_id) DO UPDATE SET
                    death_date = EXCLUDED.death_date,
                    source = EXCLUDED.source
                """,
                values,
            )
        return len(values)

    def get_death_records(self, national_ids: Iterable[str]) -> dict[str, DeathRecord]:
        wanted = sorted({nid.upper() for nid in national_ids if nid})
        if not wanted:
            return {}
        with self._cursor() as cur:
            cur.execute("SELECT * FROM death_records WHERE national_id = ANY(%s)", (wanted,))
            return {
                row["national_id"]: DeathRecord(
                    national_id=row["national_id"],
                    death_date=row["death_date"],
                    source=row["source"] or "registry",
                )
                for row in cur.fetchall()
            }

    # ------------------------------------------------------------------
    # Audit log and hash-chain verification
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: dict) -> AuditLogEntry:
        return AuditLogEntry(
            entry_id=row["entry_id"],
            sequence=row["sequence"],
            recorded_at=row["recorded_at"],
            action=row["action"],
            entity_type=row["entity_type"] or "",
            entity_id=row["entity_id"] or "",
            actor=row["actor"] or "",
            details=row["details"] or {},
            previous_hash=row["previous_hash"].strip() if row["previous_hash"] else None,
            entry_hash=row["entry_hash"].strip(),
        )

    def last_audit_entry(self, lock: bool = False) -> Optional[AuditLogEntry]:
        with self._cursor() as cur:
            if lock:
                cur.execute("SELECT pg_advisory_xact_lock(%s)", (AUDIT_CHAIN_LOCK_KEY,))
            cur.execute("SELECT * FROM audit_log ORDER BY recorded_at DESC, sequence DESC LIMIT 1")
            row = cur.fetchone()
        return self._row_to_entry(row) if row else None

    def append_audit_entry(self, entry: AuditLogEntry) -> AuditLogEntry:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO audit_log (
                    entry_id, recorded_at, action, entity_type, entity_id, actor,
                    details, previous_hash, entry_hash
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING sequence
                """,
                (
                    entry.entry_id, entry.recorded_at, entry.action, entry.entity_type,
                    entry.entity_id, entry.actor, Json(entry.details), entry.previous_hash,
                    entry.entry_hash,
                ),
            )
            entry.sequence = cur.fetchone()["sequence"]
        return entry

    def list_audit_entries(self) -> List[AuditLogEntry]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM audit_log ORDER BY recorded_at, sequence")
            return [self._row_to_entry(row) for row in cur.fetchall()]

    def save_chain_verification(self, summary: ChainVerification, blocks: List[HashChainBlock]) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO hash_chain_runs (
                    run_id, total_blocks, invalid_blocks, chain_health, first_invalid_block, verified_at
                ) VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (
                    summary.run_id, summary.total_blocks, summary.invalid_blocks,
                    summary.chain_health.value, summary.first_invalid_block, summary.verified_at,
                ),
            )
            if blocks:
                execute_values(
                    cur,
                    """
                    INSERT INTO hash_chain_verification (
                        run_id, block_id, position, previous_hash, stored_hash,
                        computed_hash, is_valid, verified_at, verified_by
                    ) VALUES %s
                    """,
                    [
                        (
                            b.run_id, b.block_id, b.position, b.previous_hash, b.stored_hash,
                            b.computed_hash, b.is_valid, b.verified_at, b.verified_by,
                        )
                        for b in blocks
                    ],
                )

    def latest_chain_verification(self) -> Optional[ChainVerification]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM hash_chain_runs ORDER BY verified_at DESC LIMIT 1")
            row = cur.fetchone()
        if not row:
            return None
        return ChainVerification(
            run_id=row["run_id"],
            total_blocks=row["total_blocks"],
            invalid_blocks=row["invalid_blocks"],
            chain_health=ChainHealth(row["chain_health"]),
            first_invalid_block=row["first_invalid_block"],
            verified_at=row["verified_at"],
        )

    def list_chain_blocks(self, run_id: str) -> List[HashChainBlock]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM hash_chain_verification WHERE run_id = %s ORDER BY position", (run_id,)
            )
            return [
                HashChainBlock(
                    run_id=row["run_id"],
                    block_id=row["block_id"],
                    position=row["position"],
                    previous_hash=row["previous_hash"].strip() if row["previous_hash"] else None,
                    stored_hash=row["stored_hash"].strip() if row["stored_hash"] else None,
                    computed_hash=row["computed_hash"].strip(),
                    is_valid=row["is_valid"],
                    verified_at=row["verified_at"],
                    verified_by=row["verified_by"] or "",
                )
                for row in cur.fetchall()
            ]
