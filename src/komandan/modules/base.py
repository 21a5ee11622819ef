"""Base class and shared helpers for module variants."""

import re
import shlex
from abc import ABC, abstractmethod
from dataclasses import fields
from typing import ClassVar, Iterable, NoReturn

from ..exceptions import ModuleError
from ..plan import ActionPlan

# Package names may carry versions (pkg=1.2), archs (pkg.x86_64) and "+" (g++)
_PACKAGE_UNSAFE = re.compile(r"[^A-Za-z0-9_.+=-]")

quote = shlex.quote


class Module(ABC):
    """A declarative description of remote work.

    Subclasses are frozen dataclasses. ``compile`` is pure: it validates
    the parameters and returns an ActionPlan without touching the network
    or the filesystem.
    """

    module_name: ClassVar[str] = "module"

    @abstractmethod
    def compile(self) -> ActionPlan:
        """Translate the module parameters into an action plan.

        Raises:
            ModuleError: If the parameters are invalid or contradictory
        """

    def describe(self) -> str:
        """Short human-readable description used when a task has no name."""
        params = []
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if value is None or value is False or f.name in ("password", "vars", "script"):
                continue
            params.append(f"{f.name}={value}")
            if len(params) == 2:
                break
        return f"{self.module_name}({', '.join(params)})"

    def fail(self, message: str) -> NoReturn:
        """Raise a ModuleError attributed to this module."""
        raise ModuleError(self.module_name, message)

    def require(self, **params: object) -> None:
        """Fail unless every given parameter is set."""
        for name, value in params.items():
            if value is None or value == "":
                self.fail(f"'{name}' parameter is required")

    def require_choice(self, name: str, value: str, choices: Iterable[str]) -> None:
        """Fail unless value is one of choices."""
        choices = list(choices)
        if value not in choices:
            self.fail(f"Invalid {name}: {value}. Valid values are: {', '.join(choices)}")


def sanitize_packages(packages: str | Iterable[str] | None) -> list[str]:
    """Normalize a package or package list to sanitized names.

    Characters outside ``[A-Za-z0-9_.+=-]`` are dropped so a package
    name can never inject shell syntax.
    """
    if packages is None:
        return []
    if isinstance(packages, str):
        packages = packages.split()
    sanitized = [_PACKAGE_UNSAFE.sub("", pkg) for pkg in packages if isinstance(pkg, str)]
    return [pkg for pkg in sanitized if pkg]
