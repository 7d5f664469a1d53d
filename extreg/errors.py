"""Extension registry error types."""

import typing

from extreg.schemas.extension import ExtensionID, HookName


class ExtensionError(Exception):
    """Base error for the extension registry."""


class ParseError(ExtensionError):
    """Raised when an extension descriptor cannot be parsed."""

    def __init__(self, message: str, extension_id: typing.Optional[ExtensionID] = None) -> None:
        self.extension_id = extension_id
        super().__init__(message)


class UnknownExtension(ExtensionError):
    """Raised when an operation names an extension nobody knows about."""

    def __init__(self, extension_id: ExtensionID) -> None:
        self.extension_id = extension_id
        super().__init__(f"Unknown extension: {extension_id}")


class MissingDependency(ExtensionError):
    """Raised when a dependency is absent from the descriptor set or not installed."""

    def __init__(self, extension_id: ExtensionID, dependency: ExtensionID, reason: str = "missing") -> None:
        self.extension_id = extension_id
        self.dependency = dependency
        super().__init__(f"Extension {extension_id} requires {dependency}, which is {reason}")


class UnmetDependency(ExtensionError):
    """Raised by a verbatim enable when a dependency is neither enabled nor in the batch before it."""

    def __init__(self, extension_id: ExtensionID, dependency: ExtensionID) -> None:
        self.extension_id = extension_id
        self.dependency = dependency
        super().__init__(f"Extension {extension_id} requires {dependency} to be enabled first")


class DependentsStillEnabled(ExtensionError):
    """Raised when disabling an extension that enabled extensions depend on."""

    def __init__(self, extension_id: ExtensionID, dependents: typing.Sequence[ExtensionID]) -> None:
        self.extension_id = extension_id
        self.dependents = tuple(dependents)
        super().__init__(
            f"Extension {extension_id} is required by enabled extensions: {', '.join(self.dependents)}"
        )


class UninstallBlocked(ExtensionError):
    """Raised when uninstalling an extension other installed extensions depend on."""

    def __init__(self, extension_id: ExtensionID, dependents: typing.Sequence[ExtensionID] = (), reason: str = "") -> None:
        self.extension_id = extension_id
        self.dependents = tuple(dependents)
        super().__init__(
            reason or f"Extension {extension_id} is required by installed extensions: {', '.join(self.dependents)}"
        )


class RequiredExtension(ExtensionError):
    """Raised on any attempt to disable or uninstall a required extension."""

    def __init__(self, extension_id: ExtensionID) -> None:
        self.extension_id = extension_id
        super().__init__(f"Extension {extension_id} is required and cannot be disabled")


class CyclicDependency(ExtensionError):
    """Raised when the dependency graph contains a cycle."""

    def __init__(self, cycle: typing.Sequence[ExtensionID]) -> None:
        self.cycle = tuple(cycle)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.cycle)}")


class HookImplementerFailure(ExtensionError):
    """Wraps an exception raised by one hook implementation.

    Reported to the error sink, never raised out of dispatch.
    """

    def __init__(self, extension_id: ExtensionID, hook: HookName, error: BaseException) -> None:
        self.extension_id = extension_id
        self.hook = hook
        self.error = error
        super().__init__(f"Hook {hook} of extension {extension_id} failed: {error!r}")
