"""
User module - Manage local user accounts.

Arguments:
  name (str, required): Login name
  state (str, optional): present or absent (default present)
  uid (int, optional): User id
  group (str, optional): Primary group
  groups (str | list[str], optional): Supplementary groups (replaces the current set)
  home (str, optional): Home directory
  shell (str, optional): Login shell
  password (str, optional): Encrypted password, as accepted by useradd --password
  system (bool, optional): Create a system account (default False)
  create_home (bool, optional): Create the home directory (default True)
  remove (bool, optional): Remove the home directory with the account (default False)
  force (bool, optional): Force removal even when the user is logged in (default False)

Idempotent: Yes (attributes are changed only when they differ)
"""

import re
from dataclasses import dataclass, field
from typing import Sequence

from ..plan import ActionPlan, RunShell
from .base import Module, quote

USER_STATES = ("present", "absent")

_USER_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*\$?$")


@dataclass(frozen=True)
class User(Module):
    """Create, modify or remove a user account."""

    module_name = "user"

    name: str = ""
    state: str = "present"
    uid: int | None = None
    group: str | None = None
    groups: str | Sequence[str] | None = None
    home: str | None = None
    shell: str | None = None
    password: str | None = field(default=None, repr=False)
    system: bool = False
    create_home: bool = True
    remove: bool = False
    force: bool = False

    def _groups(self) -> str | None:
        if self.groups is None:
            return None
        groups = self.groups.split(",") if isinstance(self.groups, str) else list(self.groups)
        return ",".join(g.strip() for g in groups if g.strip())

    def compile(self) -> ActionPlan:
        self.require(name=self.name)
        self.require_choice("state", self.state, USER_STATES)
        if not _USER_NAME.match(self.name):
            self.fail(f"Invalid user name: {self.name}")
        name = quote(self.name)
        exists = f"id -u {name} >/dev/null 2>&1"

        if self.state == "absent":
            opts = (" -r" if self.remove else "") + (" -f" if self.force else "")
            return ActionPlan.of(RunShell(f"if {exists}; then userdel{opts} {name}; fi"))

        groups = self._groups()
        add = ["useradd"]
        modify = []
        if self.uid is not None:
            uid = quote(str(self.uid))
            add.append(f"--uid {uid}")
            modify.append(f'[ "$(id -u {name})" = {uid} ] || usermod --uid {uid} {name}')
        if self.group:
            group = quote(self.group)
            add.append(f"--gid {group}")
            modify.append(f'[ "$(id -gn {name})" = {group} ] || usermod --gid {group} {name}')
        if groups is not None:
            add.append(f"--groups {quote(groups)}")
            modify.append(f"usermod --groups {quote(groups)} {name}")
        if self.home:
            home = quote(self.home)
            add.append(f"--home-dir {home}")
            modify.append(f'[ "$(getent passwd {name} | cut -d: -f6)" = {home} ] || usermod --home {home} {name}')
        if self.shell:
            shell = quote(self.shell)
            add.append(f"--shell {shell}")
            modify.append(f'[ "$(getent passwd {name} | cut -d: -f7)" = {shell} ] || usermod --shell {shell} {name}')
        if self.password is not None:
            password = quote(self.password)
            add.append(f"--password {password}")
            modify.append(
                f'[ "$(getent shadow {name} | cut -d: -f2)" = {password} ] || usermod --password {password} {name}'
            )
        if self.system:
            add.append("--system")
        if self.create_home:
            add.append("--create-home")
        add.append(name)

        update = " && ".join(f"{{ {m}; }}" for m in modify) or ":"
        return ActionPlan.of(
            RunShell(f"if {exists}; then {update}; else {' '.join(add)}; fi", sensitive=self.password is not None)
        )
