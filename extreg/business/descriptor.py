"""Extension descriptor discovery.

Every extension is a directory holding an `extension.json` descriptor.
"""

import typing
import pydantic
from pathlib import Path
from typing import Optional as Opt
from extreg.errors import ParseError
from extreg.logger import logger
from extreg.schemas.extension import (
    PROFILE_WEIGHT, ExtensionID, ExtensionType, RawDescriptor
)


DESCRIPTOR_FILENAME = "extension.json"


class DescriptorParser:
    """Parse raw descriptor bytes into a `RawDescriptor`."""

    def parse(self, data: bytes, extension_id: Opt[ExtensionID] = None) -> RawDescriptor:
        try:
            descriptor = RawDescriptor.model_validate_json(data)
        except pydantic.ValidationError as e:
            raise ParseError(str(e), extension_id=extension_id) from e
        if extension_id is not None:
            descriptor = descriptor.model_copy(update={"id": extension_id})
        return descriptor


class DescriptorStore:
    """Read-only view of the descriptors available on disk.

    Scanning never touches the registry, it only refreshes the descriptor set.
    The active installation profile is always part of the result.
    """

    def __init__(
        self,
        extensions_dir: Path,
        profiles_dir: Opt[Path] = None,
        profile: Opt[ExtensionID] = None,
        parser: Opt[DescriptorParser] = None,
    ) -> None:
        self._extensions_dir = Path(extensions_dir)
        self._profiles_dir = Path(profiles_dir) if profiles_dir else None
        self._profile = profile
        self._parser = parser or DescriptorParser()
        self._descriptors: dict[ExtensionID, RawDescriptor] = {}

    @property
    def profile(self) -> Opt[ExtensionID]:
        return self._profile

    @property
    def descriptors(self) -> typing.Mapping[ExtensionID, RawDescriptor]:
        """Result of the last scan."""
        return self._descriptors

    def load(self, extension_id: ExtensionID) -> Opt[RawDescriptor]:
        """Read one descriptor, None if absent or malformed."""
        if extension_id == self._profile:
            return self._load_profile()
        return self._read(self._extensions_dir / extension_id, extension_id)

    def scan_all(self) -> dict[ExtensionID, RawDescriptor]:
        descriptors: dict[ExtensionID, RawDescriptor] = {}
        if self._extensions_dir.is_dir():
            for path in sorted(self._extensions_dir.iterdir()):
                if not path.is_dir() or path.name.startswith(("_", ".")):
                    continue
                if path.name == self._profile:
                    logger.warning("Extension [{}] shadows the installation profile, skipped", path.name)
                    continue
                descriptor = self._read(path, path.name)
                if descriptor is not None:
                    descriptors[path.name] = descriptor
        else:
            logger.warning("Extensions directory {} does not exist", self._extensions_dir)

        if self._profile:
            descriptors[self._profile] = self._load_profile()

        self._descriptors = descriptors
        logger.debug("Scanned {} extension descriptors", len(descriptors))
        return dict(descriptors)

    def _read(self, directory: Path, extension_id: ExtensionID) -> Opt[RawDescriptor]:
        descriptor_path = directory / DESCRIPTOR_FILENAME
        if not descriptor_path.is_file():
            return None
        try:
            return self._parser.parse(descriptor_path.read_bytes(), extension_id=extension_id)
        except ParseError as e:
            logger.warning("Extension [{}] skipped, malformed descriptor: {}", extension_id, e)
        except OSError as e:
            logger.warning("Extension [{}] skipped, unreadable descriptor: {}", extension_id, e)
        return None

    def _load_profile(self) -> RawDescriptor:
        profile = typing.cast(ExtensionID, self._profile)
        descriptor = None
        if self._profiles_dir is not None:
            descriptor = self._read(self._profiles_dir / profile, profile)
        if descriptor is None:
            descriptor = RawDescriptor(id=profile, name=profile)
        return descriptor.model_copy(
            update={"type": ExtensionType.PROFILE, "weight": PROFILE_WEIGHT}
        )
