"""
Artifact media types for native binaries.

The layer media type tells a registry or downstream tool what kind of
executable a blob holds without downloading it.
"""

MEDIA_TYPE_WASM = "application/vnd.bolter.wasm.v1"
MEDIA_TYPE_WINDOWS_EXE = "application/vnd.bolter.windows.exe.v1"
MEDIA_TYPE_MACHO = "application/vnd.bolter.macho.v1"
MEDIA_TYPE_ELF = "application/vnd.bolter.elf.v1"
MEDIA_TYPE_PLAN9 = "application/vnd.bolter.plan9.v1"
MEDIA_TYPE_XCOFF = "application/vnd.bolter.xcoff.v1"
MEDIA_TYPE_BINARY = "application/vnd.bolter.binary.v1"

WASM_HOSTS = ("js", "wasip1")

ELF_SYSTEMS = ("linux", "freebsd", "openbsd", "netbsd", "dragonfly", "solaris", "illumos")

_BY_OS = {
    "windows": MEDIA_TYPE_WINDOWS_EXE,
    "darwin": MEDIA_TYPE_MACHO,
    "plan9": MEDIA_TYPE_PLAN9,
    "aix": MEDIA_TYPE_XCOFF,
}
_BY_OS.update({name: MEDIA_TYPE_ELF for name in ELF_SYSTEMS})


def media_type_for(os_name: str, arch: str) -> str:
    """
    Map a platform to the media type of its binary layer.

    WASM wins over the OS switch; unknown systems get the generic type.
    """
    if arch == "wasm" or os_name in WASM_HOSTS:
        return MEDIA_TYPE_WASM
    return _BY_OS.get(os_name, MEDIA_TYPE_BINARY)
