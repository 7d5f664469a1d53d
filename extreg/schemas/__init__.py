__all__ = [
    "ExtensionModel",
    "ExtensionRecord",
    "RawDescriptor",
]

from .extension import ExtensionModel, ExtensionRecord, RawDescriptor
