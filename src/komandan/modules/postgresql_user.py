"""
PostgresqlUser module - Create or drop a PostgreSQL role with psql.

The commands run psql with the connecting identity, so the task normally
elevates to the "postgres" user (elevate=True, as_user="postgres").

Arguments:
  name (str, required): Role name, a plain SQL identifier
  password (str, optional): Role password
  role_attr_flags (str | list[str], optional): Role attributes such as
    "CREATEDB,LOGIN" or ["SUPERUSER"]
  action (str, optional): create or drop (default create)

Idempotent: Yes (the role is created only when missing and dropped only when present)
"""

import re
from dataclasses import dataclass, field
from typing import Sequence

from ..plan import ActionPlan, RunShell
from .base import Module, quote

POSTGRESQL_ACTIONS = ("create", "drop")

ROLE_ATTRIBUTES = frozenset({
    "SUPERUSER", "NOSUPERUSER",
    "CREATEDB", "NOCREATEDB",
    "CREATEROLE", "NOCREATEROLE",
    "INHERIT", "NOINHERIT",
    "LOGIN", "NOLOGIN",
    "REPLICATION", "NOREPLICATION",
    "BYPASSRLS", "NOBYPASSRLS",
})

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*$")

PSQL_CHECK = "command -v psql >/dev/null 2>&1 || { echo 'psql: command not found' >&2; exit 127; }"


def parse_role_attr_flags(flags: str | Sequence[str] | None) -> list[str]:
    """Split role attributes given as "A,B", "A B" or a list, upper-cased."""
    if flags is None:
        return []
    if isinstance(flags, str):
        flags = re.split(r"[,\s]+", flags)
    return [flag.strip().upper() for flag in flags if flag and flag.strip()]


@dataclass(frozen=True)
class PostgresqlUser(Module):
    """Create or drop a PostgreSQL role."""

    module_name = "postgresql_user"

    name: str = ""
    password: str | None = field(default=None, repr=False)
    role_attr_flags: str | Sequence[str] | None = None
    action: str = "create"

    def compile(self) -> ActionPlan:
        self.require(name=self.name)
        self.require_choice("action", self.action, POSTGRESQL_ACTIONS)
        if not _IDENTIFIER.match(self.name):
            self.fail(f"Invalid role name: {self.name}")

        flags = parse_role_attr_flags(self.role_attr_flags)
        unknown = [flag for flag in flags if flag not in ROLE_ATTRIBUTES]
        if unknown:
            self.fail(f"Invalid role_attr_flags: {', '.join(unknown)}")

        exists = quote(f"SELECT 1 FROM pg_roles WHERE rolname = '{self.name}'")
        probe = f'exists=$(psql -tAc {exists}) || exit 1'

        if self.action == "create":
            query = f"CREATE USER {self.name}"
            options = list(flags)
            if self.password is not None:
                escaped = self.password.replace("'", "''")
                options.append(f"PASSWORD '{escaped}'")
            if options:
                query += " WITH " + " ".join(options)
            change = f'[ "$exists" = 1 ] || psql -c {quote(query + ";")}'
        else:
            change = f'[ "$exists" != 1 ] || psql -c {quote(f"DROP ROLE {self.name};")}'

        return ActionPlan.of(
            RunShell(PSQL_CHECK),
            RunShell(f"{probe}; {change}", sensitive=self.password is not None),
        )
