"""External collaborators: processes, files, packages, services, privileges."""

from archrig.capabilities.exec import CommandRunner, CommandTimeout, ExecError, ExecResult
from archrig.capabilities.fs import FileSystem
from archrig.capabilities.pacman import PackageManager
from archrig.capabilities.privilege import Elevation
from archrig.capabilities.systemd import ServiceManager

__all__ = [
    "CommandRunner",
    "CommandTimeout",
    "Elevation",
    "ExecError",
    "ExecResult",
    "FileSystem",
    "PackageManager",
    "ServiceManager",
]
