"""Supported target triples and host metadata normalization."""

import platform
from dataclasses import dataclass


@dataclass(frozen=True)
class TargetInfo:
    triple: str
    arch: str
    os: str
    libc: str | None
    pip_platforms: tuple[str, ...]
    executable_suffix: str = ""


SUPPORTED_TARGETS: dict[str, TargetInfo] = {
    info.triple: info
    for info in (
        TargetInfo(
            "x86_64-unknown-linux-gnu", "x86_64", "linux", "gnu", ("manylinux_2_17_x86_64", "manylinux2014_x86_64")
        ),
        TargetInfo(
            "aarch64-unknown-linux-gnu", "aarch64", "linux", "gnu", ("manylinux_2_17_aarch64", "manylinux2014_aarch64")
        ),
        TargetInfo("x86_64-unknown-linux-musl", "x86_64", "linux", "musl", ("musllinux_1_1_x86_64",)),
        TargetInfo("aarch64-unknown-linux-musl", "aarch64", "linux", "musl", ("musllinux_1_1_aarch64",)),
        TargetInfo("x86_64-apple-darwin", "x86_64", "darwin", None, ("macosx_10_9_x86_64",)),
        TargetInfo("aarch64-apple-darwin", "aarch64", "darwin", None, ("macosx_11_0_arm64",)),
        TargetInfo("x86_64-pc-windows-msvc", "x86_64", "windows", None, ("win_amd64",), ".exe"),
    )
}

ARCH_ALIASES = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "x64": "x86_64",
    "aarch64": "aarch64",
    "arm64": "aarch64",
    "armv8": "aarch64",
}

OS_ALIASES = {
    "linux": "linux",
    "darwin": "darwin",
    "macos": "darwin",
    "macosx": "darwin",
    "osx": "darwin",
    "windows": "windows",
    "win32": "windows",
    "win": "windows",
}

LIBC_ALIASES = {
    "gnu": "gnu",
    "glibc": "gnu",
    "musl": "musl",
}


def normalize_arch(arch: str | None) -> str | None:
    if not arch:
        return None
    return ARCH_ALIASES.get(arch.strip().lower())


def normalize_os(os_name: str | None) -> str | None:
    if not os_name:
        return None
    return OS_ALIASES.get(os_name.strip().lower())


def normalize_libc(libc: str | None) -> str | None:
    if not libc:
        return None
    return LIBC_ALIASES.get(libc.strip().lower())


def find_target(arch: str, os_name: str, libc: str | None = None) -> TargetInfo | None:
    """Find the supported target for normalized metadata.

    Linux defaults to glibc when ``libc`` is not given.
    """
    if os_name == "linux":
        libc = libc or "gnu"
    else:
        libc = None
    for info in SUPPORTED_TARGETS.values():
        if info.arch == arch and info.os == os_name and info.libc == libc:
            return info
    return None


def detect_local_platform() -> tuple[str | None, str | None, str | None]:
    """Return normalized (arch, os, libc) of the machine running binship."""
    arch = normalize_arch(platform.machine())
    os_name = normalize_os(platform.system())
    libc = None
    if os_name == "linux":
        name, _ = platform.libc_ver()
        libc = "gnu" if name == "glibc" else "musl"
    return arch, os_name, libc
