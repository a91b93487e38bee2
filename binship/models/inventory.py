"""Host inventory models."""

from typing import Any
from typing import Literal

from pydantic import BaseModel
from pydantic import Field
from pydantic import model_validator


class HostInfo(BaseModel):
    """Connection and platform metadata for one host."""

    host_id: str = Field(description="Inventory name of the host")
    address: str | None = Field(default=None, description="Network address (defaults to host_id)")
    connection: Literal["local", "ssh"] = "ssh"
    user: str | None = None
    port: int | None = None
    arch: str | None = Field(default=None, description="CPU architecture, e.g. x86_64 or arm64")
    os: str | None = Field(default=None, description="Operating system, e.g. linux or darwin")
    libc: str | None = Field(default=None, description="C library flavour on linux (gnu or musl)")
    target_triple: str | None = Field(default=None, description="Explicit per-host target override")
    install_dir: str | None = Field(default=None, description="Where binaries are installed on this host")
    vars: dict[str, Any] = Field(default_factory=dict, description="Host variables embedded for conditions")

    @property
    def ssh_destination(self) -> str:
        address = self.address or self.host_id
        return f"{self.user}@{address}" if self.user else address


class Inventory(BaseModel):
    """Hosts keyed by host id."""

    hosts: dict[str, HostInfo] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def fill_host_ids(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("hosts"), dict):
            hosts = {}
            for host_id, info in data["hosts"].items():
                info = dict(info or {})
                info.setdefault("host_id", host_id)
                hosts[host_id] = info
            data = {**data, "hosts": hosts}
        return data

    @classmethod
    def from_document(cls, document: Any) -> "Inventory":
        """Build an inventory from a parsed YAML/JSON document.

        Accepts ``{hosts: {id: {...}}}`` or a plain list of host names. Bare
        names are treated as local hosts.
        """
        if isinstance(document, list):
            return cls(hosts={str(name): HostInfo(host_id=str(name), connection="local") for name in document})
        return cls.model_validate(document or {})

    def get(self, host_id: str) -> HostInfo:
        try:
            return self.hosts[host_id]
        except KeyError:
            raise KeyError(f"Host not in inventory: {host_id}") from None

    def subset(self, host_ids: list[str]) -> "Inventory":
        return Inventory(hosts={host_id: self.get(host_id) for host_id in host_ids})

    def __len__(self) -> int:
        return len(self.hosts)
