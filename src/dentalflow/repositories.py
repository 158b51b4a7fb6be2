"""
Patient Repository

Create, read, update and delete for patient records:
- create: Insert a patient (clinic defaults to the current clinic)
- get / list: Read patients, hiding soft-deleted rows unless asked
- update: Change whitelisted fields only
- soft_delete / delete: Flag or remove a patient

Writes are refused while the system is in read-only mode.
"""

import logging
import uuid
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .database import ConnectionManager
from .meta import MetaStore

logger = logging.getLogger(__name__)

DEFAULT_CLINIC_ID = "clinic_001"

_COLUMNS = (
    "id, display_id, full_name, phone, gender, birth_date, city_id, notes, "
    "medical_history, clinic_id, created_at, updated_at, is_deleted"
)


@dataclass
class Patient:
    """A patient row."""
    id: str
    full_name: str
    phone: str
    clinic_id: str
    display_id: Optional[int] = None
    gender: Optional[str] = None
    birth_date: Optional[str] = None
    city_id: Optional[str] = None
    notes: Optional[str] = None
    medical_history: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    is_deleted: bool = False

    @classmethod
    def from_row(cls, row) -> "Patient":
        return cls(
            id=row["id"],
            display_id=row["display_id"],
            full_name=row["full_name"],
            phone=row["phone"],
            gender=row["gender"],
            birth_date=row["birth_date"],
            city_id=row["city_id"],
            notes=row["notes"],
            medical_history=row["medical_history"],
            clinic_id=row["clinic_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            is_deleted=bool(row["is_deleted"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PatientRepository:
    """
    Patient persistence over the Schema Store.

    Example:
        patients = PatientRepository(db, MetaStore(db))
        patient_id = patients.create({"full_name": "Mona Adel", "phone": "0100"})
        patients.update(patient_id, {"notes": "Allergic to penicillin"})
    """

    # Fields callers may change through update()
    UPDATABLE_FIELDS = frozenset({
        "full_name",
        "phone",
        "gender",
        "birth_date",
        "city_id",
        "notes",
        "medical_history",
    })
    REQUIRED_FIELDS = ("full_name", "phone")

    def __init__(self, connection: ConnectionManager, meta: Optional[MetaStore] = None):
        self.connection = connection
        self.meta = meta or MetaStore(connection)

    def _check_fields(self, data: Dict[str, Any], allowed) -> None:
        unknown = set(data) - set(allowed)
        if unknown:
            raise ValueError(f"Unknown patient field(s): {', '.join(sorted(unknown))}")

    def _current_clinic_id(self) -> str:
        return self.meta.get("current_clinic_id") or DEFAULT_CLINIC_ID

    def create(self, data: Dict[str, Any]) -> str:
        """
        Insert a patient.

        Returns:
            The new patient id

        Raises:
            ValueError: Unknown or missing fields
            ReadOnlyModeError: While writes are blocked
        """
        self._check_fields(data, self.UPDATABLE_FIELDS | {"clinic_id"})
        for name in self.REQUIRED_FIELDS:
            if not data.get(name):
                raise ValueError(f"Patient {name} is required")
        self.meta.require_writable()

        values = dict(data)
        values.setdefault("clinic_id", self._current_clinic_id())
        patient_id = str(uuid.uuid4())
        columns = ["id", *values]

        with self.connection.transaction() as conn:
            row = conn.execute(
                "SELECT COALESCE(MAX(display_id), 0) + 1 FROM patients"
            ).fetchone()
            columns.append("display_id")
            params = [patient_id, *values.values(), row[0]]
            conn.execute(
                f"INSERT INTO patients ({', '.join(columns)}) "
                f"VALUES ({', '.join('?' for _ in columns)})",
                params,
            )
        logger.debug(f"Created patient {patient_id}")
        return patient_id

    def get(self, patient_id: str, include_deleted: bool = False) -> Optional[Patient]:
        query = f"SELECT {_COLUMNS} FROM patients WHERE id = ?"
        if not include_deleted:
            query += " AND COALESCE(is_deleted, 0) = 0"
        with self.connection.connection() as conn:
            row = conn.execute(query, (patient_id,)).fetchone()
        return Patient.from_row(row) if row else None

    def list(self, clinic_id: Optional[str] = None, include_deleted: bool = False) -> List[Patient]:
        query = f"SELECT {_COLUMNS} FROM patients WHERE 1 = 1"
        params: List[Any] = []
        if clinic_id is not None:
            query += " AND clinic_id = ?"
            params.append(clinic_id)
        if not include_deleted:
            query += " AND COALESCE(is_deleted, 0) = 0"
        query += " ORDER BY display_id, created_at"
        with self.connection.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [Patient.from_row(row) for row in rows]

    def update(self, patient_id: str, data: Dict[str, Any]) -> bool:
        """
        Update whitelisted fields of a patient.

        Returns:
            True if a row was updated

        Raises:
            ValueError: Any key outside UPDATABLE_FIELDS
            ReadOnlyModeError: While writes are blocked
        """
        self._check_fields(data, self.UPDATABLE_FIELDS)
        if not data:
            return False
        self.meta.require_writable()

        assignments = ", ".join(f"{name} = ?" for name in data)
        params = [*data.values(), datetime.now(timezone.utc).isoformat(), patient_id]
        with self.connection.connection() as conn:
            cursor = conn.execute(
                f"UPDATE patients SET {assignments}, updated_at = ? WHERE id = ?",
                params,
            )
        return cursor.rowcount > 0

    def soft_delete(self, patient_id: str) -> bool:
        self.meta.require_writable()
        with self.connection.connection() as conn:
            cursor = conn.execute(
                "UPDATE patients SET is_deleted = 1, updated_at = ? WHERE id = ?",
                (datetime.now(timezone.utc).isoformat(), patient_id),
            )
        return cursor.rowcount > 0

    def delete(self, patient_id: str) -> bool:
        """Remove a patient permanently."""
        self.meta.require_writable()
        with self.connection.connection() as conn:
            cursor = conn.execute("DELETE FROM patients WHERE id = ?", (patient_id,))
        if cursor.rowcount:
            logger.info(f"Deleted patient {patient_id}")
        return cursor.rowcount > 0
