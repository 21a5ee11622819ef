"""
SystemdService module - Manage systemd units.

Arguments:
  name (str, required): Unit name, e.g. "nginx" or "getty@tty1.service"
  action (str, optional): start, stop, restart, reload, enable or disable (default start)
  state (str, optional): started, stopped, restarted, reloaded, enabled or disabled;
    an alternative spelling of action
  daemon_reload (bool, optional): Run "systemctl daemon-reload" first (default False)
  force (bool, optional): Pass --force to enable/disable (default False)

Idempotent: Yes for start, stop, enable and disable; restart and reload always run
"""

import re
from dataclasses import dataclass

from ..plan import ActionPlan, RunShell
from .base import Module, quote

SERVICE_ACTIONS = ("start", "stop", "restart", "reload", "enable", "disable")
SERVICE_STATES = {
    "started": "start",
    "stopped": "stop",
    "restarted": "restart",
    "reloaded": "reload",
    "enabled": "enable",
    "disabled": "disable",
}

_UNIT_NAME = re.compile(r"^[A-Za-z0-9@._:\\-]+$")


@dataclass(frozen=True)
class SystemdService(Module):
    """Start, stop, restart, reload, enable or disable a systemd unit."""

    module_name = "systemd_service"

    name: str = ""
    action: str | None = None
    state: str | None = None
    daemon_reload: bool = False
    force: bool = False

    def compile(self) -> ActionPlan:
        self.require(name=self.name)
        if not _UNIT_NAME.match(self.name):
            self.fail(f"Invalid unit name: {self.name}")
        if self.action is not None and self.state is not None:
            self.fail("action and state parameters cannot be used together")

        if self.state is not None:
            self.require_choice("state", self.state, SERVICE_STATES)
            action = SERVICE_STATES[self.state]
        else:
            action = self.action or "start"
            self.require_choice("action", action, SERVICE_ACTIONS)

        unit = quote(self.name)
        force = " --force" if self.force else ""
        commands = {
            "start": f"systemctl is-active --quiet {unit} || systemctl start {unit}",
            "stop": f"if systemctl is-active --quiet {unit}; then systemctl stop {unit}; fi",
            "restart": f"systemctl restart {unit}",
            "reload": f"systemctl reload {unit}",
            "enable": f"systemctl is-enabled --quiet {unit} || systemctl enable{force} {unit}",
            "disable": f"if systemctl is-enabled --quiet {unit}; then systemctl disable{force} {unit}; fi",
        }

        steps = []
        if self.daemon_reload:
            steps.append(RunShell("systemctl daemon-reload"))
        steps.append(RunShell(commands[action]))
        return ActionPlan.of(*steps)
