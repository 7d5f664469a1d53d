import datetime
import enum
import typing
import pydantic
import sqlalchemy
import sqlmodel
from typing import Optional as Opt
from ..utils.base import enum_serializer, unique


ExtensionID: typing.TypeAlias = str
HookName: typing.TypeAlias = str

SCHEMA_UNINSTALLED = -1
"""`schema_version` of an extension that is not installed."""

PROFILE_WEIGHT = 1000
"""Weight forced onto the active installation profile so its hooks run last."""

BOOTSTRAP_HOOKS: tuple[HookName, ...] = ("boot", "exit", "language_init", "watchdog")
"""Hooks that require an extension to be loaded during early bootstrap."""


class ExtensionStatus(enum.Enum):
    DISABLED = "disabled"
    ENABLED = "enabled"


class ExtensionType(enum.Enum):
    MODULE = "module"
    THEME = "theme"
    PROFILE = "profile"


class ListKind(enum.Enum):
    ALL = "all"
    BOOTSTRAP = "bootstrap"


class RawDescriptor(pydantic.BaseModel):
    """Parsed `extension.json` of one extension.

    Produced once per scan and replaced wholesale on rescan.
    Unknown keys are kept as extra metadata (asset paths, etc.).
    """
    model_config = pydantic.ConfigDict(frozen=True, extra="allow")

    id: ExtensionID = ""
    """Set by the descriptor store from the directory name."""
    name: str
    description: str = ""
    type: typing.Annotated[ExtensionType, enum_serializer] = ExtensionType.MODULE
    version: Opt[str] = None
    package: Opt[str] = None
    dependencies: tuple[ExtensionID, ...] = ()
    """Declared dependencies, an ordered set."""
    required: bool = False
    hidden: bool = False
    weight: int = 0
    schema_version: int = pydantic.Field(default=0, ge=0)
    """Schema version the extension is at once installed."""

    @pydantic.field_validator("dependencies", mode="before")
    @classmethod
    def _dedupe_dependencies(cls, value: typing.Any) -> typing.Any:
        if isinstance(value, str):
            value = [value]
        if isinstance(value, (list, tuple)):
            return unique(str(dep).strip() for dep in value if str(dep).strip())
        return value

    @property
    def metadata(self) -> dict[str, typing.Any]:
        return dict(self.model_extra or {})


class ExtensionRecord(pydantic.BaseModel):
    """Mutable lifecycle state of one extension.

    In-memory counterpart of an `ExtensionModel` row.
    """
    model_config = pydantic.ConfigDict(from_attributes=True, validate_assignment=True)

    id: ExtensionID
    name: str = ""
    type: typing.Annotated[ExtensionType, enum_serializer] = ExtensionType.MODULE
    owner: str = ""
    status: typing.Annotated[ExtensionStatus, enum_serializer] = ExtensionStatus.DISABLED
    bootstrap: list[HookName] = pydantic.Field(default_factory=list)
    """Bootstrap hook kinds this extension implements, sorted."""
    schema_version: int = SCHEMA_UNINSTALLED
    weight: int = 0
    info: dict = pydantic.Field(default_factory=dict)
    config: Opt[dict] = None
    installed_at: Opt[datetime.datetime] = None
    updated_at: Opt[datetime.datetime] = None

    @pydantic.field_validator("bootstrap", "info", mode="before")
    @classmethod
    def _null_as_empty(cls, value: typing.Any, info: pydantic.ValidationInfo) -> typing.Any:
        if value is None:
            return [] if info.field_name == "bootstrap" else {}
        return value

    @property
    def enabled(self) -> bool:
        return self.status == ExtensionStatus.ENABLED

    @property
    def installed(self) -> bool:
        return self.schema_version != SCHEMA_UNINSTALLED

    @property
    def sort_key(self) -> tuple[int, ExtensionID]:
        return (self.weight, self.id)

    def to_table(self) -> "ExtensionModel":
        return ExtensionModel(
            id=self.id,
            name=self.name,
            type=self.type.value,
            owner=self.owner,
            status=self.status,
            bootstrap=list(self.bootstrap),
            schema_version=self.schema_version,
            weight=self.weight,
            info=self.info,
            config=self.config,
            installed_at=self.installed_at,
            updated_at=datetime.datetime.now(),
        )


class ExtensionModel(sqlmodel.SQLModel, table=True):
    """

    One row per discovered extension.
    A row with `schema_version` -1 is known but not installed.
    """

    __tablename__: str = 'extensions'  # type: ignore

    id: ExtensionID = sqlmodel.Field(primary_key=True)
    """Extension id, the name of its directory."""
    name: str = sqlmodel.Field(
        default="", sa_column=sqlalchemy.Column(sqlalchemy.Text, nullable=False)
    )
    type: str = sqlmodel.Field(
        default=ExtensionType.MODULE.value,
        sa_column=sqlalchemy.Column(sqlalchemy.Text, nullable=False)
    )
    owner: str = sqlmodel.Field(default="")
    status: ExtensionStatus = sqlmodel.Field(
        default=ExtensionStatus.DISABLED,
        sa_column=sqlalchemy.Column(
            sqlalchemy.Enum(
                ExtensionStatus, name='extension_status',
                values_callable=lambda x: [e.value for e in x]
            ),
            nullable=False
        )
    )
    bootstrap: Opt[list] = sqlmodel.Field(default=None, sa_column=sqlalchemy.Column(sqlalchemy.JSON))
    schema_version: int = sqlmodel.Field(default=SCHEMA_UNINSTALLED)
    weight: int = sqlmodel.Field(default=0)
    info: Opt[dict] = sqlmodel.Field(default=None, sa_column=sqlalchemy.Column(sqlalchemy.JSON))
    """Serialized descriptor of the last scan."""
    config: Opt[dict] = sqlmodel.Field(default=None, sa_column=sqlalchemy.Column(sqlalchemy.JSON))
    """Per-extension K-V settings, see `ExtensionBase.config`.
    """
    installed_at: Opt[datetime.datetime] = sqlmodel.Field(
        default=None,
        sa_column=sqlalchemy.Column(sqlalchemy.TIMESTAMP(timezone=True), nullable=True)
    )
    updated_at: datetime.datetime = sqlmodel.Field(
        default_factory=datetime.datetime.now,
        sa_column=sqlalchemy.Column(
            sqlalchemy.TIMESTAMP(timezone=True), onupdate=datetime.datetime.now
        )
    )
