"""komandan - agentless remote execution over SSH.

Describe target machines as Hosts and work as Tasks wrapping a module;
komandan opens an SSH session per unit of work, runs the compiled plan,
and hands back structured results. Batches fan out over worker threads.

Quick Start:
    from komandan import DEFAULTS, Host, Task, komando, komando_parallel_hosts
    from komandan.modules import Apt

    DEFAULTS.set("user", "deploy")
    DEFAULTS.set("private_key_file", "~/.ssh/id_ed25519")

    result = komando(Host(address="10.0.0.5"), "uptime")
    print(result.stdout)

    hosts = [Host(address="10.0.0.5"), Host(address="10.0.0.6")]
    for unit in komando_parallel_hosts(hosts, Task(Apt(package="nginx"), elevate=True)):
        print(unit.host, "ok" if unit.ok else unit.error or unit.result.exit_code)
"""

__version__ = "0.1.0"

from komandan.defaults import DEFAULTS, Defaults, DefaultsStore
from komandan.exceptions import (
    ConfigError,
    ConnectionError,
    ConnectionStage,
    ElevationError,
    ExecutionTimeout,
    KomandanError,
    MissingField,
    ModuleError,
    PatternError,
    TransferError,
    UnexpectedError,
)
from komandan.host_filter import filter_hosts
from komandan.komando import (
    komando,
    komando_async,
    komando_parallel_hosts,
    komando_parallel_hosts_async,
    komando_parallel_tasks,
    komando_parallel_tasks_async,
    komando_sequence,
    komando_sequence_async,
)
from komandan.modules import (
    Apt,
    Cmd,
    Dnf,
    Download,
    File,
    GetUrl,
    LineInFile,
    Module,
    PostgresqlUser,
    Script,
    SystemdService,
    Template,
    Upload,
    User,
)
from komandan.types import ExecutionResult, Host, Task, UnitResult

__all__ = [
    "__version__",
    "DEFAULTS",
    "Defaults",
    "DefaultsStore",
    "Host",
    "Task",
    "ExecutionResult",
    "UnitResult",
    "filter_hosts",
    "komando",
    "komando_async",
    "komando_parallel_hosts",
    "komando_parallel_hosts_async",
    "komando_parallel_tasks",
    "komando_parallel_tasks_async",
    "komando_sequence",
    "komando_sequence_async",
    "Module",
    "Cmd",
    "Script",
    "Upload",
    "Download",
    "Template",
    "Apt",
    "Dnf",
    "File",
    "LineInFile",
    "SystemdService",
    "PostgresqlUser",
    "GetUrl",
    "User",
    "KomandanError",
    "MissingField",
    "ConnectionError",
    "ConnectionStage",
    "ElevationError",
    "ModuleError",
    "TransferError",
    "ExecutionTimeout",
    "PatternError",
    "ConfigError",
    "UnexpectedError",
]
