"""
Dnf module - Manage Fedora/RHEL packages with dnf.

Arguments:
  package (str | list[str], optional): Package name(s)
  action (str, optional): install, remove, update, upgrade or autoremove
    (default install when a package is given)
  update_cache (bool, optional): Run "dnf makecache" first (default False)
  install_weak_deps (bool, optional): Install weak dependencies (default True)

Idempotent: Yes (install/remove only touch packages not yet in the wanted state)
"""

from dataclasses import dataclass
from typing import Sequence

from ..plan import ActionPlan, RunShell
from .base import Module, quote, sanitize_packages

DNF_ACTIONS = ("install", "remove", "update", "upgrade", "autoremove")
DNF = "dnf -y -q"

_IS_INSTALLED = 'rpm -q --whatprovides "$p" >/dev/null 2>&1'


def _for_packages(packages: list[str], installed: bool, command: str) -> str:
    """Run command on the subset of packages that are (or are not) installed."""
    names = " ".join(quote(p) for p in packages)
    collect = "&&" if installed else "||"
    return (
        f"pending=''; for p in {names}; do {_IS_INSTALLED} {collect} pending=\"$pending $p\"; done; "
        f"[ -z \"$pending\" ] || {command} $pending"
    )


@dataclass(frozen=True)
class Dnf(Module):
    """Install, remove or upgrade packages with dnf."""

    module_name = "dnf"

    package: str | Sequence[str] | None = None
    action: str | None = None
    update_cache: bool = False
    install_weak_deps: bool = True

    def compile(self) -> ActionPlan:
        packages = sanitize_packages(self.package)
        action = self.action
        if action is None and packages:
            action = "install"
        if action is not None:
            self.require_choice("action", action, DNF_ACTIONS)
        if action in ("install", "remove") and not packages:
            self.fail("package is required")
        if action is None and not self.update_cache:
            self.fail("one of package, action or update_cache is required")

        steps = []
        if self.update_cache:
            steps.append(RunShell("dnf makecache -q"))

        if action == "install":
            opts = "" if self.install_weak_deps else " --setopt=install_weak_deps=False"
            steps.append(RunShell(_for_packages(packages, False, f"{DNF}{opts} install")))
        elif action == "remove":
            steps.append(RunShell(_for_packages(packages, True, f"{DNF} remove")))
        elif action in ("update", "upgrade"):
            steps.append(RunShell(f"{DNF} upgrade"))
        elif action == "autoremove":
            steps.append(RunShell(f"{DNF} autoremove"))

        return ActionPlan.of(*steps)
