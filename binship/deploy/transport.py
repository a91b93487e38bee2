"""Remote file operations used by the deployment manager.

Contract:
- Inputs: HostInfo, local artifact paths, remote paths
- Outputs: Remote checksums
- Side Effects: Copies, renames and removes files on hosts
"""

import asyncio
import logging
import os
import shlex
import shutil
from abc import ABC
from abc import abstractmethod
from pathlib import Path
from pathlib import PurePosixPath

from ..compilation.process import run_command
from ..errors import TransferError
from ..models.inventory import HostInfo
from ..utils.checksums import file_checksum

logger = logging.getLogger(__name__)


class Transport(ABC):
    """File operations on one kind of host connection.

    Every method raises TransferError on failure. ``activate`` must replace
    the active path atomically so a host never runs a partially written
    binary.
    """

    @abstractmethod
    async def upload(self, host: HostInfo, local_path: Path, remote_path: str) -> None: ...

    @abstractmethod
    async def checksum(self, host: HostInfo, remote_path: str) -> tuple[str, int]:
        """Return (sha256, size) of a remote file."""

    @abstractmethod
    async def promote(self, host: HostInfo, staged_path: str, release_path: str) -> None:
        """Rename a verified upload to its release path, replacing any file there."""

    @abstractmethod
    async def activate(self, host: HostInfo, release_path: str, active_path: str) -> None:
        """Make ``release_path`` the executable at ``active_path``."""

    @abstractmethod
    async def remove(self, host: HostInfo, paths: list[str]) -> list[str]:
        """Remove files or directories. Returns the paths that existed."""

    @abstractmethod
    async def exists(self, host: HostInfo, remote_path: str) -> bool: ...


class LocalTransport(Transport):
    """Transport for hosts reachable through the local filesystem.

    With a ``root``, each host gets its own directory ``<root>/<host_id>``
    and remote paths are resolved inside it.
    """

    def __init__(self, root: Path | None = None) -> None:
        self.root = Path(root) if root is not None else None

    def resolve(self, host: HostInfo, remote_path: str) -> Path:
        if self.root is None:
            return Path(remote_path)
        relative = PurePosixPath(remote_path)
        if relative.is_absolute():
            relative = relative.relative_to("/")
        return self.root / host.host_id / relative

    async def upload(self, host: HostInfo, local_path: Path, remote_path: str) -> None:
        target = self.resolve(host, remote_path)

        def _copy() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            partial = target.with_name(f".{target.name}.partial")
            shutil.copyfile(local_path, partial)
            partial.chmod(0o755)
            os.replace(partial, target)

        try:
            await asyncio.to_thread(_copy)
        except OSError as e:
            raise TransferError(f"Upload of {local_path} to {host.host_id}:{remote_path} failed: {e}") from e

    async def checksum(self, host: HostInfo, remote_path: str) -> tuple[str, int]:
        try:
            return await asyncio.to_thread(file_checksum, self.resolve(host, remote_path))
        except OSError as e:
            raise TransferError(f"Cannot checksum {host.host_id}:{remote_path}: {e}") from e

    async def promote(self, host: HostInfo, staged_path: str, release_path: str) -> None:
        staged, release = self.resolve(host, staged_path), self.resolve(host, release_path)

        def _promote() -> None:
            release.parent.mkdir(parents=True, exist_ok=True)
            os.replace(staged, release)

        try:
            await asyncio.to_thread(_promote)
        except OSError as e:
            raise TransferError(f"Cannot promote {staged_path} on {host.host_id}: {e}") from e

    async def activate(self, host: HostInfo, release_path: str, active_path: str) -> None:
        release, active = self.resolve(host, release_path), self.resolve(host, active_path)

        def _activate() -> None:
            active.parent.mkdir(parents=True, exist_ok=True)
            tmp = active.with_name(f".{active.name}.new")
            shutil.copyfile(release, tmp)
            tmp.chmod(0o755)
            os.replace(tmp, active)

        try:
            await asyncio.to_thread(_activate)
        except OSError as e:
            raise TransferError(f"Cannot activate {release_path} on {host.host_id}: {e}") from e

    async def remove(self, host: HostInfo, paths: list[str]) -> list[str]:
        def _remove() -> list[str]:
            removed = []
            for remote_path in paths:
                path = self.resolve(host, remote_path)
                if path.is_dir() and not path.is_symlink():
                    shutil.rmtree(path)
                elif path.exists() or path.is_symlink():
                    path.unlink()
                else:
                    continue
                removed.append(remote_path)
            return removed

        try:
            return await asyncio.to_thread(_remove)
        except OSError as e:
            raise TransferError(f"Cannot remove files on {host.host_id}: {e}") from e

    async def exists(self, host: HostInfo, remote_path: str) -> bool:
        return self.resolve(host, remote_path).exists()


class SSHTransport(Transport):
    """Transport over the system ``ssh`` and ``scp`` clients."""

    def __init__(self, options: list[str] | None = None, timeout: float | None = None) -> None:
        self.options = options if options is not None else ["-o", "BatchMode=yes"]
        self.timeout = timeout

    def _ssh_args(self, host: HostInfo) -> list[str]:
        args = ["ssh", *self.options]
        if host.port:
            args += ["-p", str(host.port)]
        return [*args, host.ssh_destination]

    async def _ssh(self, host: HostInfo, command: str) -> str:
        result = await run_command(*self._ssh_args(host), command, timeout=self.timeout)
        if not result.ok:
            raise TransferError(f"ssh {host.host_id} '{command}' failed ({result.returncode}): {result.output}")
        return result.stdout

    async def upload(self, host: HostInfo, local_path: Path, remote_path: str) -> None:
        remote = PurePosixPath(remote_path)
        partial = remote.with_name(f".{remote.name}.partial")
        await self._ssh(host, f"mkdir -p {shlex.quote(str(remote.parent))}")

        args = ["scp", "-q", *self.options]
        if host.port:
            args += ["-P", str(host.port)]
        args += [str(local_path), f"{host.ssh_destination}:{partial}"]
        result = await run_command(*args, timeout=self.timeout)
        if not result.ok:
            raise TransferError(f"scp to {host.host_id} failed ({result.returncode}): {result.output}")

        await self._ssh(
            host, f"chmod 755 {shlex.quote(str(partial))} && mv -f {shlex.quote(str(partial))} {shlex.quote(remote_path)}"
        )

    async def checksum(self, host: HostInfo, remote_path: str) -> tuple[str, int]:
        quoted = shlex.quote(remote_path)
        output = await self._ssh(
            host, f"(sha256sum {quoted} 2>/dev/null || shasum -a 256 {quoted}) | cut -d' ' -f1 && wc -c < {quoted}"
        )
        lines = [line.strip() for line in output.splitlines() if line.strip()]
        if len(lines) < 2:
            raise TransferError(f"Unexpected checksum output from {host.host_id}: {output!r}")
        return lines[0], int(lines[1])

    async def promote(self, host: HostInfo, staged_path: str, release_path: str) -> None:
        release = PurePosixPath(release_path)
        await self._ssh(
            host,
            f"mkdir -p {shlex.quote(str(release.parent))} && mv -f {shlex.quote(staged_path)} {shlex.quote(release_path)}",
        )

    async def activate(self, host: HostInfo, release_path: str, active_path: str) -> None:
        active = PurePosixPath(active_path)
        tmp = shlex.quote(str(active.with_name(f".{active.name}.new")))
        await self._ssh(
            host,
            f"mkdir -p {shlex.quote(str(active.parent))} && cp {shlex.quote(release_path)} {tmp} "
            f"&& chmod 755 {tmp} && mv -f {tmp} {shlex.quote(active_path)}",
        )

    async def remove(self, host: HostInfo, paths: list[str]) -> list[str]:
        if not paths:
            return []
        checks = " ; ".join(f"test -e {shlex.quote(p)} && echo {shlex.quote(p)}" for p in paths)
        output = await self._ssh(host, f"{checks} ; rm -rf {' '.join(shlex.quote(p) for p in paths)}")
        return [line.strip() for line in output.splitlines() if line.strip()]

    async def exists(self, host: HostInfo, remote_path: str) -> bool:
        result = await run_command(*self._ssh_args(host), f"test -e {shlex.quote(remote_path)}", timeout=self.timeout)
        if result.returncode == 255:
            raise TransferError(f"ssh {host.host_id} failed: {result.output}")
        return result.ok


def default_transport_factory(ssh_options: list[str] | None = None):
    """Return a callable choosing a transport from the host's connection type."""
    local = LocalTransport()
    ssh = SSHTransport(ssh_options)

    def factory(host: HostInfo) -> Transport:
        return local if host.connection == "local" else ssh

    return factory
