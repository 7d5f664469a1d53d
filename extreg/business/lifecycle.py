"""Install, enable, disable and uninstall transitions.

Each call is all-or-nothing: a failure restores every record it touched and
drops the schemas it created.
"""

import contextlib
import typing
from typing import Optional as Opt
from extreg.errors import (
    DependentsStillEnabled, MissingDependency, RequiredExtension, UninstallBlocked,
    UnknownExtension, UnmetDependency,
)
from extreg.logger import logger
from extreg.schemas.extension import (
    SCHEMA_UNINSTALLED, ExtensionID, ExtensionStatus, RawDescriptor,
)
from extreg.utils.base import unique
from .descriptor import DescriptorStore
from .hooks import HookDispatcher
from .migrator import SchemaMigrator
from .registry import ExtensionRegistry
from .resolver import DependencyGraph, resolve


class LifecycleController:

    def __init__(
        self,
        registry: ExtensionRegistry,
        descriptor_store: DescriptorStore,
        hooks: HookDispatcher,
        migrator: Opt[SchemaMigrator] = None,
    ) -> None:
        self._registry = registry
        self._descriptor_store = descriptor_store
        self._hooks = hooks
        self._migrator = migrator

    @property
    def _descriptors(self) -> typing.Mapping[ExtensionID, RawDescriptor]:
        return self._descriptor_store.descriptors

    @contextlib.contextmanager
    def _operation(self) -> typing.Iterator[list[ExtensionID]]:
        """Registry transaction that also drops schemas created in it on failure."""
        created: list[ExtensionID] = []
        try:
            with self._registry.transaction():
                yield created
        except Exception:
            for ext_id in reversed(created):
                try:
                    typing.cast(SchemaMigrator, self._migrator).uninstall(ext_id)
                except Exception as e:
                    logger.opt(exception=e).error("Extension [{}] schema rollback failed", ext_id)
            raise

    def _graph(self) -> DependencyGraph:
        """Graph over the scanned descriptors.

        An installed extension whose descriptor vanished keeps the one recorded
        at its last scan, so it still counts as a dependent.
        """
        descriptors = dict(self._descriptors)
        for ext_id, record in self._registry.records().items():
            if ext_id not in descriptors and record.installed and record.info:
                descriptors[ext_id] = RawDescriptor.model_validate(record.info)
        return DependencyGraph(descriptors)

    def _check_known(self, ext_id: ExtensionID) -> None:
        if ext_id not in self._descriptors or self._registry.get(ext_id) is None:
            raise UnknownExtension(ext_id)

    def _is_required(self, ext_id: ExtensionID) -> bool:
        descriptor = self._descriptors.get(ext_id)
        if descriptor is not None:
            return descriptor.required
        record = self._registry.get(ext_id)
        return bool(record and record.info.get("required"))

    def _install(self, ext_id: ExtensionID, created: list[ExtensionID]) -> bool:
        record = self._registry.get(ext_id)
        if record is None or ext_id not in self._descriptors:
            raise UnknownExtension(ext_id)
        if record.installed:
            return False

        descriptor = self._descriptors[ext_id]
        for dep in descriptor.dependencies:
            dep_record = self._registry.get(dep)
            if dep not in self._descriptors or dep_record is None:
                raise MissingDependency(ext_id, dep)
            if not dep_record.installed:
                raise MissingDependency(ext_id, dep, reason="not installed")

        if self._migrator is not None:
            self._migrator.install(ext_id, descriptor.schema_version)
            created.append(ext_id)
        self._registry.set_schema_version(ext_id, descriptor.schema_version)
        self._hooks.invoke(ext_id, "install")
        logger.info("Extension [{}] installed at schema {}", ext_id, descriptor.schema_version)
        return True

    def install(self, ext_id: ExtensionID) -> bool:
        """Install one extension whose dependencies are installed.

        :return: False if it was installed already.
        """
        with self._operation() as created:
            installed = self._install(ext_id, created)
            if installed:
                self._hooks.invoke_all("modules_installed", [ext_id])
        return installed

    def enable(
        self, ext_ids: typing.Iterable[ExtensionID], resolve_dependencies: bool = True
    ) -> list[ExtensionID]:
        """Enable extensions, installing them first when needed.

        :param resolve_dependencies:
            If True, disabled dependencies are enabled too, in dependency order.
            If False, the given order is used as is and every dependency must be
            enabled already or come earlier in the list.
        :return: Extensions enabled by this call, in activation order.
        """
        ext_ids = unique(ext_ids)
        with self._operation() as created:
            for ext_id in ext_ids:
                self._check_known(ext_id)
            enabled = set(self._registry.list_enabled())

            if resolve_dependencies:
                order = list(resolve(
                    self._descriptors, ext_ids, enabled=enabled, weights=self._registry.weights()
                ).order)
            else:
                order = [i for i in ext_ids if i not in enabled]
                available = set(enabled)
                for ext_id in order:
                    for dep in self._descriptors[ext_id].dependencies:
                        if dep not in available:
                            raise UnmetDependency(ext_id, dep)
                    available.add(ext_id)

            installed = []
            for ext_id in order:
                if self._install(ext_id, created):
                    installed.append(ext_id)
                self._registry.apply_transition(ext_id, ExtensionStatus.ENABLED)
                self._hooks.invoke(ext_id, "enable")
                logger.info("Extension [{}] enabled", ext_id)

            if installed:
                self._hooks.invoke_all("modules_installed", installed)
            if order:
                self._hooks.invoke_all("modules_enabled", order)
        return order

    def disable(self, ext_ids: typing.Iterable[ExtensionID], cascade: bool = False) -> list[ExtensionID]:
        """Disable extensions.

        :param cascade: Disable enabled dependents too, deepest first.
        :return: Extensions disabled by this call, in the order they were disabled.
        """
        ext_ids = unique(ext_ids)
        with self._operation():
            for ext_id in ext_ids:
                if self._registry.get(ext_id) is None:
                    raise UnknownExtension(ext_id)
                if self._is_required(ext_id):
                    raise RequiredExtension(ext_id)

            graph = self._graph()
            enabled = set(self._registry.list_enabled())
            targets = [i for i in ext_ids if i in enabled]
            to_disable = set(targets)
            for ext_id in targets:
                dependents = sorted(
                    i for i in graph.required_by(ext_id) if i in enabled and i not in targets
                )
                if dependents and not cascade:
                    raise DependentsStillEnabled(ext_id, dependents)
                to_disable.update(dependents)
            for ext_id in sorted(to_disable):
                if self._is_required(ext_id):
                    raise RequiredExtension(ext_id)

            order = list(reversed(graph.order(to_disable, weights=self._registry.weights())))
            for ext_id in order:
                self._hooks.invoke(ext_id, "disable")
                self._registry.apply_transition(ext_id, ExtensionStatus.DISABLED)
                logger.info("Extension [{}] disabled", ext_id)

            if order:
                self._hooks.invoke_all("modules_disabled", order)
        return order

    def uninstall(self, ext_ids: typing.Iterable[ExtensionID]) -> list[ExtensionID]:
        """Uninstall disabled extensions, dropping their schema.

        :return: Extensions uninstalled by this call, dependents first.
        """
        ext_ids = unique(ext_ids)
        with self._operation():
            for ext_id in ext_ids:
                record = self._registry.get(ext_id)
                if record is None:
                    raise UnknownExtension(ext_id)
                if self._is_required(ext_id):
                    raise RequiredExtension(ext_id)
                if record.enabled:
                    raise UninstallBlocked(
                        ext_id, reason=f"Extension {ext_id} must be disabled before uninstall"
                    )

            graph = self._graph()
            targets = [i for i in ext_ids if typing.cast(typing.Any, self._registry.get(i)).installed]
            for ext_id in targets:
                dependents = sorted(
                    i for i in graph.required_by(ext_id)
                    if i not in targets
                    and (record := self._registry.get(i)) is not None
                    and record.installed
                )
                if dependents:
                    raise UninstallBlocked(ext_id, dependents)

            order = list(reversed(graph.order(targets, weights=self._registry.weights())))
            for ext_id in order:
                self._hooks.invoke(ext_id, "uninstall")
                self._registry.set_schema_version(ext_id, SCHEMA_UNINSTALLED)
                logger.info("Extension [{}] uninstalled", ext_id)

            if order:
                self._hooks.invoke_all("modules_uninstalled", order)

        # schemas are dropped only once the records are committed
        if self._migrator is not None:
            for ext_id in order:
                try:
                    self._migrator.uninstall(ext_id)
                except Exception as e:
                    logger.opt(exception=e).error("Extension [{}] schema teardown failed", ext_id)
        return order
