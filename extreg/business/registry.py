"""Persisted lifecycle state of every known extension."""

import contextlib
import datetime
import threading
import typing
import sqlmodel
from typing import Optional as Opt
from extreg.errors import UnknownExtension
from extreg.logger import logger
from extreg.schemas.extension import (
    PROFILE_WEIGHT, SCHEMA_UNINSTALLED, ExtensionID, ExtensionModel, ExtensionRecord,
    ExtensionStatus, ExtensionType, HookName, ListKind, RawDescriptor,
)


class ExtensionStore:
    """Key/value table of extension records keyed by extension id."""

    def __init__(self, session_factory: typing.Callable[[], sqlmodel.Session]) -> None:
        self._session_factory = session_factory

    def session(self) -> sqlmodel.Session:
        return self._session_factory()

    def all(self) -> dict[ExtensionID, ExtensionRecord]:
        with self.session() as db:
            return {
                row.id: ExtensionRecord.model_validate(row)
                for row in db.exec(sqlmodel.select(ExtensionModel)).all()
            }

    def get(self, db: sqlmodel.Session, ext_id: ExtensionID) -> Opt[ExtensionRecord]:
        row = db.get(ExtensionModel, ext_id)
        return ExtensionRecord.model_validate(row) if row is not None else None

    def put(self, db: sqlmodel.Session, record: ExtensionRecord) -> None:
        db.merge(record.to_table())

    def delete(self, db: sqlmodel.Session, ext_id: ExtensionID) -> None:
        row = db.get(ExtensionModel, ext_id)
        if row is not None:
            db.delete(row)


class ExtensionRegistry:
    """Source of truth for installed/enabled state, schema versions and weights.

    Records are held in memory and written through to the store.
    Every mutation happens inside `transaction()`, which serializes writers
    and commits all changed records at once; readers never take the lock.
    """

    def __init__(self, store: ExtensionStore) -> None:
        self._store = store
        self._records: dict[ExtensionID, ExtensionRecord] = {}
        self._enabled: dict[ListKind, tuple[ExtensionID, ...]] = {}
        self._listeners: list[typing.Callable[[], None]] = []
        self._dirty: set[ExtensionID] = set()
        self._deleted: set[ExtensionID] = set()
        self._depth = 0
        self._generation = 0
        self._cache_lock = threading.Lock()
        self.lock = threading.RLock()

    def load(self) -> None:
        """(Re)read every record from the store."""
        with self.lock:
            self._records = self._store.all()
            self._dirty.clear()
            self._deleted.clear()
        self.invalidate()

    def subscribe(self, listener: typing.Callable[[], None]) -> None:
        """Call `listener` whenever the enabled set or weights change."""
        self._listeners.append(listener)

    def invalidate(self) -> None:
        with self._cache_lock:
            self._generation += 1
            self._enabled = {}
        for listener in self._listeners:
            listener()

    # ========== reads ==========

    def get(self, ext_id: ExtensionID) -> Opt[ExtensionRecord]:
        return self._records.get(ext_id)

    def _get_or_raise(self, ext_id: ExtensionID) -> ExtensionRecord:
        record = self._records.get(ext_id)
        if record is None:
            raise UnknownExtension(ext_id)
        return record

    def records(self) -> typing.Mapping[ExtensionID, ExtensionRecord]:
        return self._records

    def weights(self) -> dict[ExtensionID, int]:
        return {ext_id: record.weight for ext_id, record in self._records.items()}

    def list_enabled(self, kind: ListKind = ListKind.ALL) -> tuple[ExtensionID, ...]:
        """Enabled extensions ordered by weight, then id.

        This is the order hooks are dispatched in.
        """
        cached = self._enabled.get(kind)
        if cached is not None:
            return cached

        generation = self._generation
        result = self._sorted_enabled(kind)
        with self._cache_lock:
            # a concurrent invalidation makes this result stale
            if generation == self._generation:
                self._enabled[kind] = result
        return result

    def _sorted_enabled(self, kind: ListKind) -> tuple[ExtensionID, ...]:
        records = sorted(
            (r for r in list(self._records.values()) if r.enabled),
            key=lambda r: r.sort_key,
        )
        if kind == ListKind.BOOTSTRAP:
            records = [r for r in records if r.bootstrap]
        return tuple(r.id for r in records)

    # ========== writes ==========

    @contextlib.contextmanager
    def transaction(self) -> typing.Iterator[None]:
        """All-or-nothing scope for registry writes.

        Nested scopes join the outermost one.
        """
        with self.lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            snapshot = {i: r.model_copy(deep=True) for i, r in self._records.items()}
            self._depth = 1
            try:
                yield
                self._flush()
            except BaseException:
                self._records = snapshot
                self._dirty.clear()
                self._deleted.clear()
                self.invalidate()
                raise
            finally:
                self._depth = 0

    def _flush(self) -> None:
        if not self._dirty and not self._deleted:
            return
        with self._store.session() as db:
            for ext_id in sorted(self._dirty):
                self._store.put(db, self._records[ext_id])
            for ext_id in sorted(self._deleted):
                self._store.delete(db, ext_id)
            db.commit()
        logger.debug("Persisted {} extension records", len(self._dirty) + len(self._deleted))
        self._dirty.clear()
        self._deleted.clear()

    def _require_transaction(self) -> None:
        if not self._depth:
            raise RuntimeError("Registry writes must happen inside transaction()")

    def _touch(self, record: ExtensionRecord) -> None:
        record.updated_at = datetime.datetime.now()
        self._dirty.add(record.id)

    def sync(
        self,
        descriptors: typing.Mapping[ExtensionID, RawDescriptor],
        bootstrap: typing.Callable[[ExtensionID], typing.Iterable[HookName]] = lambda _: (),
    ) -> None:
        """Merge a fresh scan into the records.

        New extensions are recorded as disabled and not installed. Records
        whose descriptor vanished are kept while installed, dropped otherwise.
        """
        with self.transaction():
            for ext_id, descriptor in descriptors.items():
                record = self._records.get(ext_id)
                if record is None:
                    record = ExtensionRecord(id=ext_id, weight=descriptor.weight)
                    self._records[ext_id] = record
                    logger.info("Extension [{}] discovered", ext_id)
                record.name = descriptor.name
                record.type = descriptor.type
                record.owner = descriptor.package or ""
                record.info = descriptor.model_dump(mode="json")
                record.bootstrap = sorted(set(bootstrap(ext_id)))
                if descriptor.type == ExtensionType.PROFILE:
                    record.weight = PROFILE_WEIGHT
                self._touch(record)

            for ext_id in [i for i in self._records if i not in descriptors]:
                if not self._records[ext_id].installed:
                    del self._records[ext_id]
                    self._dirty.discard(ext_id)
                    self._deleted.add(ext_id)
                    logger.info("Extension [{}] vanished, record dropped", ext_id)
        self.invalidate()

    def apply_transition(self, ext_id: ExtensionID, status: ExtensionStatus) -> None:
        """Persist a status change and invalidate the hook index.

        Reserved for the lifecycle controller.
        """
        self._require_transaction()
        record = self._records[ext_id]
        if record.status == status:
            return
        record.status = status
        self._touch(record)
        self.invalidate()

    def set_schema_version(self, ext_id: ExtensionID, version: int) -> None:
        self._require_transaction()
        record = self._records[ext_id]
        record.schema_version = version
        record.installed_at = datetime.datetime.now() if version != SCHEMA_UNINSTALLED else None
        self._touch(record)

    def set_weight(self, ext_id: ExtensionID, weight: int) -> None:
        with self.transaction():
            record = self._get_or_raise(ext_id)
            if record.weight == weight:
                return
            record.weight = weight
            self._touch(record)
        self.invalidate()

    def save_config(self, ext_id: ExtensionID, config: Opt[dict]) -> None:
        with self.transaction():
            record = self._get_or_raise(ext_id)
            record.config = config
            self._touch(record)
