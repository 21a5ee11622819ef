"""
Apt module - Manage Debian/Ubuntu packages with apt-get.

Arguments:
  package (str | list[str], optional): Package name(s); "name=version" pins a version
  action (str, optional): install, remove, purge, upgrade or autoremove
    (default install when a package is given)
  update_cache (bool, optional): Run "apt-get update" first (default False)
  install_recommends (bool, optional): Install recommended packages (default True)

Idempotent: Yes (install/remove only touch packages not yet in the wanted state)
"""

from dataclasses import dataclass
from typing import Sequence

from ..plan import ActionPlan, RunShell
from .base import Module, quote, sanitize_packages

APT_ACTIONS = ("install", "remove", "purge", "upgrade", "autoremove")
APT_GET = "apt-get -y -q"

# Strip a "=version" pin before asking dpkg
_IS_INSTALLED = "dpkg-query -W -f='${Status}' \"${p%%=*}\" 2>/dev/null | grep -q 'ok installed'"


def _for_packages(packages: list[str], installed: bool, command: str) -> str:
    """Run command on the subset of packages that are (or are not) installed."""
    names = " ".join(quote(p) for p in packages)
    collect = "&&" if installed else "||"
    return (
        f"pending=''; for p in {names}; do {_IS_INSTALLED} {collect} pending=\"$pending $p\"; done; "
        f"[ -z \"$pending\" ] || {command} $pending"
    )


@dataclass(frozen=True)
class Apt(Module):
    """Install, remove or upgrade packages with apt-get."""

    module_name = "apt"

    package: str | Sequence[str] | None = None
    action: str | None = None
    update_cache: bool = False
    install_recommends: bool = True

    def compile(self) -> ActionPlan:
        packages = sanitize_packages(self.package)
        action = self.action
        if action is None and packages:
            action = "install"
        if action is not None:
            self.require_choice("action", action, APT_ACTIONS)
        if action in ("install", "remove", "purge") and not packages:
            self.fail("package is required")
        if action is None and not self.update_cache:
            self.fail("one of package, action or update_cache is required")

        steps = []
        if self.update_cache:
            steps.append(RunShell("apt-get update -q"))

        if action == "install":
            opts = "" if self.install_recommends else " --no-install-recommends"
            steps.append(RunShell(_for_packages(packages, False, f"{APT_GET}{opts} install")))
        elif action in ("remove", "purge"):
            steps.append(RunShell(_for_packages(packages, True, f"{APT_GET} {action}")))
        elif action in ("upgrade", "autoremove"):
            steps.append(RunShell(f"{APT_GET} {action}"))

        return ActionPlan.of(*steps)
