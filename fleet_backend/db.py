"""
Machine registry storage: a SQLAlchemy store and an in-memory test implementation.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from sqlalchemy import Column, DateTime, String, create_engine, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from fleet_backend.errors import DuplicateNameError, MachineNotFoundError, StoreError
from fleet_backend.provider import NodeStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MachineStore(Protocol):
    """Interface for the machine registry."""

    def list_machines(self) -> list["MachineRecord"]:
        ...

    def create_machine(
        self, name: str, start_url: str, stop_url: str
    ) -> "MachineRecord":
        ...

    def update_machine(
        self,
        machine_id: str,
        start_url: Optional[str] = None,
        stop_url: Optional[str] = None,
    ) -> "MachineRecord":
        """A None URL keeps the stored value."""
        ...

    def delete_machine(self, machine_id: str) -> None:
        ...

    def find_by_id(self, machine_id: str) -> Optional["MachineRecord"]:
        ...

    def find_by_name(self, name: str) -> Optional["MachineRecord"]:
        ...

    def update_status(
        self, name: str, node: NodeStatus
    ) -> Optional["MachineRecord"]:
        ...

    def update_status_by_id(
        self, machine_id: str, node: NodeStatus
    ) -> Optional["MachineRecord"]:
        ...

    def close(self) -> None:
        ...


@dataclass
class MachineRecord:
    machine_id: str
    name: str
    start_url: str = ""
    stop_url: str = ""
    node_id: str = ""
    status: str = ""
    os: str = ""
    ip: str = ""
    last_boot_up_time: str = ""
    created_at: datetime = field(default_factory=_utcnow)

    def apply_node_status(self, node: NodeStatus) -> None:
        self.node_id = node.node_id
        self.status = node.status
        self.os = node.os
        self.ip = node.ip
        self.last_boot_up_time = node.last_boot_up_time

    def as_dict(self) -> dict:
        return {
            "id": self.machine_id,
            "name": self.name,
            "nodeId": self.node_id,
            "startUrl": self.start_url,
            "stopUrl": self.stop_url,
            "status": self.status,
            "os": self.os,
            "ip": self.ip,
            "lastBootUpTime": self.last_boot_up_time,
            "createdAt": self.created_at.isoformat(),
        }


class InMemoryMachineStore:
    """
    Simple in-memory registry for development and tests.

    Route handlers and refresh timers call in from different threads, so every
    method holds the lock and hands out copies of the stored records.
    """

    def __init__(self):
        self.machines: Dict[str, MachineRecord] = {}
        self._lock = threading.Lock()

    def _find_by_name_locked(self, name: str) -> Optional[MachineRecord]:
        for record in self.machines.values():
            if record.name == name:
                return record
        return None

    def list_machines(self) -> list[MachineRecord]:
        with self._lock:
            return [replace(record) for record in self.machines.values()]

    def create_machine(self, name: str, start_url: str, stop_url: str) -> MachineRecord:
        with self._lock:
            if self._find_by_name_locked(name):
                raise DuplicateNameError(name)
            record = MachineRecord(
                machine_id=uuid.uuid4().hex,
                name=name,
                start_url=start_url,
                stop_url=stop_url,
            )
            self.machines[record.machine_id] = record
            return replace(record)

    def update_machine(
        self,
        machine_id: str,
        start_url: Optional[str] = None,
        stop_url: Optional[str] = None,
    ) -> MachineRecord:
        with self._lock:
            record = self.machines.get(machine_id)
            if not record:
                raise MachineNotFoundError(machine_id)
            if start_url is not None:
                record.start_url = start_url
            if stop_url is not None:
                record.stop_url = stop_url
            return replace(record)

    def delete_machine(self, machine_id: str) -> None:
        with self._lock:
            self.machines.pop(machine_id, None)

    def find_by_id(self, machine_id: str) -> Optional[MachineRecord]:
        with self._lock:
            record = self.machines.get(machine_id)
            return replace(record) if record else None

    def find_by_name(self, name: str) -> Optional[MachineRecord]:
        with self._lock:
            record = self._find_by_name_locked(name)
            return replace(record) if record else None

    def update_status(self, name: str, node: NodeStatus) -> Optional[MachineRecord]:
        with self._lock:
            record = self._find_by_name_locked(name)
            if not record:
                return None
            record.apply_node_status(node)
            return replace(record)

    def update_status_by_id(
        self, machine_id: str, node: NodeStatus
    ) -> Optional[MachineRecord]:
        with self._lock:
            record = self.machines.get(machine_id)
            if not record:
                return None
            record.apply_node_status(node)
            return replace(record)

    def close(self) -> None:
        pass


class SqlMachineStore:
    """
    SQLAlchemy-backed registry. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).

    The schema is owned by ``fleet_backend.migrations``; run the migrations
    before serving traffic.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlMachineStore")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )

    def _to_record(self, row: "MachineRow") -> MachineRecord:
        created_at = row.created_at
        if created_at.tzinfo is None:
            # SQLite drops the offset on the way back.
            created_at = created_at.replace(tzinfo=timezone.utc)
        return MachineRecord(
            machine_id=row.id,
            name=row.name,
            start_url=row.start_url or "",
            stop_url=row.stop_url or "",
            node_id=row.node_id or "",
            status=row.status or "",
            os=row.os or "",
            ip=row.ip or "",
            last_boot_up_time=row.last_boot_up_time or "",
            created_at=created_at,
        )

    def list_machines(self) -> list[MachineRecord]:
        try:
            with self.Session() as session:
                rows = session.execute(
                    select(MachineRow).order_by(
                        MachineRow.created_at.asc(), MachineRow.id.asc()
                    )
                ).scalars()
                return [self._to_record(row) for row in rows]
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def create_machine(self, name: str, start_url: str, stop_url: str) -> MachineRecord:
        try:
            with self.Session() as session:
                existing = session.execute(
                    select(MachineRow.id).where(MachineRow.name == name)
                ).first()
                if existing:
                    raise DuplicateNameError(name)
                row = MachineRow(
                    id=uuid.uuid4().hex,
                    name=name,
                    start_url=start_url,
                    stop_url=stop_url,
                    node_id="",
                    status="",
                    os="",
                    ip="",
                    last_boot_up_time="",
                    created_at=_utcnow(),
                )
                session.add(row)
                session.commit()
                session.refresh(row)
                return self._to_record(row)
        except IntegrityError as exc:
            # Lost a race against a concurrent insert of the same name.
            raise DuplicateNameError(name) from exc
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def update_machine(
        self,
        machine_id: str,
        start_url: Optional[str] = None,
        stop_url: Optional[str] = None,
    ) -> MachineRecord:
        try:
            with self.Session() as session:
                row = session.get(MachineRow, machine_id)
                if not row:
                    raise MachineNotFoundError(machine_id)
                if start_url is not None:
                    row.start_url = start_url
                if stop_url is not None:
                    row.stop_url = stop_url
                session.commit()
                session.refresh(row)
                return self._to_record(row)
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def delete_machine(self, machine_id: str) -> None:
        try:
            with self.Session() as session:
                row = session.get(MachineRow, machine_id)
                if not row:
                    return
                session.delete(row)
                session.commit()
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def find_by_id(self, machine_id: str) -> Optional[MachineRecord]:
        try:
            with self.Session() as session:
                row = session.get(MachineRow, machine_id)
                return self._to_record(row) if row else None
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def find_by_name(self, name: str) -> Optional[MachineRecord]:
        try:
            with self.Session() as session:
                row = session.execute(
                    select(MachineRow).where(MachineRow.name == name)
                ).scalar_one_or_none()
                return self._to_record(row) if row else None
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def _apply_node_status(
        self, session: Session, row: Optional["MachineRow"], node: NodeStatus
    ) -> Optional[MachineRecord]:
        if not row:
            return None
        row.node_id = node.node_id
        row.status = node.status
        row.os = node.os
        row.ip = node.ip
        row.last_boot_up_time = node.last_boot_up_time
        session.commit()
        session.refresh(row)
        return self._to_record(row)

    def update_status(self, name: str, node: NodeStatus) -> Optional[MachineRecord]:
        try:
            with self.Session() as session:
                row = session.execute(
                    select(MachineRow).where(MachineRow.name == name)
                ).scalar_one_or_none()
                return self._apply_node_status(session, row, node)
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def update_status_by_id(
        self, machine_id: str, node: NodeStatus
    ) -> Optional[MachineRecord]:
        try:
            with self.Session() as session:
                row = session.get(MachineRow, machine_id)
                return self._apply_node_status(session, row, node)
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc

    def close(self) -> None:
        self.engine.dispose()


Base = declarative_base()


class MachineRow(Base):
    __tablename__ = "machines"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, unique=True, index=True)
    node_id = Column(String, nullable=False, default="")
    start_url = Column(String, nullable=False, default="")
    stop_url = Column(String, nullable=False, default="")
    status = Column(String, nullable=False, default="")
    os = Column(String, nullable=False, default="")
    ip = Column(String, nullable=False, default="")
    last_boot_up_time = Column(String, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False)
