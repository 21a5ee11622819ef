"""Module variants: declarative descriptions of remote work.

Each variant is a frozen dataclass whose ``compile()`` turns its
parameters into an ActionPlan. Adding a module means adding a class
here; there is no dispatch by module name.

Example:
    >>> from komandan.modules import Apt
    >>> Apt(package="nginx", update_cache=True).compile().commands[0]
    'apt-get update -q'
"""

from .apt import Apt
from .base import Module
from .cmd import Cmd
from .dnf import Dnf
from .file import File
from .get_url import GetUrl
from .lineinfile import LineInFile
from .postgresql_user import PostgresqlUser
from .script import Script
from .systemd_service import SystemdService
from .template import Template
from .transfer import Download, Upload
from .user import User

__all__ = [
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
]
