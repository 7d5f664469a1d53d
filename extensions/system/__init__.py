"""System extension

Always enabled, runs first.
"""

from extreg.business.extension import ExtensionBase
from extreg.business.hooks import implements


class Extension(ExtensionBase, ext_id="system"):

    booted: int = 0

    @classmethod
    @implements("boot")
    def boot(cls):
        cls.booted += 1

    @classmethod
    @implements("exit")
    def exit(cls):
        cls.booted = 0
