import typing
import sqlalchemy
from extreg.logger import logger
from extreg.schemas.extension import ExtensionID

if typing.TYPE_CHECKING:
    from extreg.business.hooks import HookTable


SCHEMA_HOOK = "schema"
"""Returns the SQLModel table classes an extension owns."""


class SchemaMigrator(typing.Protocol):

    def install(self, ext_id: ExtensionID, version: int) -> None:
        ...

    def uninstall(self, ext_id: ExtensionID) -> None:
        ...


class TableSchemaMigrator:
    """Create and drop the tables an extension declares through its `schema` hook."""

    def __init__(self, engine: sqlalchemy.Engine, probe: "HookTable") -> None:
        self._engine = engine
        self._probe = probe

    def _tables(self, ext_id: ExtensionID) -> list[sqlalchemy.Table]:
        if not self._probe.implements(ext_id, SCHEMA_HOOK):
            return []
        return [
            getattr(table, "__table__", table)
            for table in self._probe.invoke(ext_id, SCHEMA_HOOK) or ()
        ]

    def install(self, ext_id: ExtensionID, version: int) -> None:
        tables = self._tables(ext_id)
        for table in tables:
            table.create(self._engine, checkfirst=True)
        if tables:
            logger.info(
                "Extension [{}] schema {} installed: {}",
                ext_id, version, ", ".join(t.name for t in tables),
            )

    def uninstall(self, ext_id: ExtensionID) -> None:
        tables = self._tables(ext_id)
        for table in reversed(tables):
            table.drop(self._engine, checkfirst=True)
        if tables:
            logger.info("Extension [{}] schema dropped: {}", ext_id, ", ".join(t.name for t in tables))
