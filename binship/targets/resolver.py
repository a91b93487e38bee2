"""Target resolution and host grouping.

Contract:
- Inputs: Inventory host metadata, optional override triple
- Outputs: Target triple per host, hosts grouped by triple
- Side Effects: None (local platform detection only)
"""

import logging
from dataclasses import dataclass
from dataclasses import field

from ..errors import UnsupportedTarget
from ..models.inventory import HostInfo
from ..models.inventory import Inventory
from .triples import SUPPORTED_TARGETS
from .triples import detect_local_platform
from .triples import find_target
from .triples import normalize_arch
from .triples import normalize_libc
from .triples import normalize_os

logger = logging.getLogger(__name__)


@dataclass
class HostGrouping:
    """Hosts grouped by target triple, plus the hosts that could not be resolved.

    Every inventory host appears exactly once, either in ``units`` or in
    ``failures``.
    """

    units: dict[str, list[str]] = field(default_factory=dict)
    failures: dict[str, UnsupportedTarget] = field(default_factory=dict)


class TargetResolver:
    """Maps inventory hosts to supported target triples.

    Resolution order: global override, per-host ``target_triple``,
    arch/os/libc metadata, then local platform detection for local hosts.

    Example:
        >>> resolver = TargetResolver()
        >>> resolver.resolve_host(HostInfo(host_id="web1", arch="amd64", os="linux"))
        'x86_64-unknown-linux-gnu'
    """

    def __init__(self, override: str | None = None) -> None:
        if override is not None and override not in SUPPORTED_TARGETS:
            raise UnsupportedTarget(
                f"Unsupported target override {override}. Supported: {', '.join(sorted(SUPPORTED_TARGETS))}"
            )
        self.override = override

    def resolve_host(self, host: HostInfo) -> str:
        """Resolve one host's target triple.

        Raises:
            UnsupportedTarget: If no supported triple matches the host
        """
        if self.override is not None:
            return self.override

        if host.target_triple is not None:
            if host.target_triple not in SUPPORTED_TARGETS:
                raise UnsupportedTarget(
                    f"Host {host.host_id} requests unsupported target {host.target_triple}", host_id=host.host_id
                )
            return host.target_triple

        arch, os_name, libc = normalize_arch(host.arch), normalize_os(host.os), normalize_libc(host.libc)
        if host.connection == "local" and not (host.arch or host.os):
            arch, os_name, libc = detect_local_platform()

        if arch is None or os_name is None:
            raise UnsupportedTarget(
                f"Cannot resolve target for host {host.host_id}: arch={host.arch!r} os={host.os!r}",
                host_id=host.host_id,
            )

        info = find_target(arch, os_name, libc)
        if info is None:
            raise UnsupportedTarget(
                f"No supported target for host {host.host_id} ({arch}/{os_name}/{libc or 'default'})",
                host_id=host.host_id,
            )
        return info.triple

    def group_hosts(self, inventory: Inventory, host_ids: list[str] | None = None) -> HostGrouping:
        """Group hosts sharing a triple so each triple is compiled once."""
        grouping = HostGrouping()
        for host_id in sorted(host_ids if host_ids is not None else inventory.hosts):
            if host_id not in inventory.hosts:
                grouping.failures[host_id] = UnsupportedTarget(f"Host {host_id} is not in the inventory", host_id)
                continue
            try:
                triple = self.resolve_host(inventory.get(host_id))
            except UnsupportedTarget as e:
                logger.warning(str(e))
                grouping.failures[host_id] = e
                continue
            grouping.units.setdefault(triple, []).append(host_id)

        logger.info(
            f"Resolved {sum(len(hosts) for hosts in grouping.units.values())} host(s) into "
            f"{len(grouping.units)} target(s), {len(grouping.failures)} unresolved"
        )
        return grouping
