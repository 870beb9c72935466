from __future__ import annotations

import platform
from pathlib import Path

from .context import PlatformProfile, linux_agent_socket
from .errors import ToolError
from .types import OperatingSystem, Result

GPG_CONF = """\
auto-key-locate keyserver
keyserver hkps://hkps.pool.sks-keyservers.net
keyserver-options no-honor-keyserver-url
personal-cipher-preferences AES256 AES192 AES CAST5
personal-digest-preferences SHA512 SHA384 SHA256 SHA224
default-preference-list SHA512 SHA384 SHA256 SHA224 AES256 AES192 AES CAST5 ZLIB BZIP2 ZIP Uncompressed
cert-digest-algo SHA512
s2k-cipher-algo AES256
s2k-digest-algo SHA512
charset utf-8
fixed-list-mode
no-comments
no-emit-version
keyid-format 0xlong
list-options show-uid-validity
verify-options show-uid-validity
with-fingerprint
use-agent
require-cross-certification
"""

DIRMNGR_CONF = """\
keyserver hkp://jirk5u4osbsr34t5.onion
keyserver hkp://keys.gnupg.net
honor-http-proxy
hkp-cacert /etc/sks-keyservers.netCA.pem
"""

CACHE_TTL_LINES = """\
# default cache timeout of 600 seconds
default-cache-ttl 600
max-cache-ttl 7200
"""


def render_gpg_agent_conf(profile: PlatformProfile, uid: int) -> str:
    """Build gpg-agent.conf for the resolved platform."""
    if profile.operating_system == OperatingSystem.MACOS:
        return (
            f"pinentry-program {profile.pinentry_program_path}\n"
            "enable-ssh-support\n"
            f"{CACHE_TTL_LINES}"
        )

    return (
        "# enables SSH support (ssh-agent)\n"
        "enable-ssh-support\n"
        "#remote\n"
        f"extra-socket {linux_agent_socket(uid, 'S.gpg-agent-extra')}\n"
        f"{CACHE_TTL_LINES}"
    )


def ensure_gnupg_dir(gnupghome: Path) -> Result[Path]:
    """Create the GnuPG directory with mode 0700 if it is absent."""
    if gnupghome.is_dir():
        return Result.ok(gnupghome)

    try:
        gnupghome.mkdir(parents=True, mode=0o700)

        # mkdir mode is filtered by the umask
        if platform.system() != "Windows":
            gnupghome.chmod(0o700)

        return Result.ok(gnupghome)
    except OSError as e:
        return Result.err(ToolError(f"Failed to create {gnupghome} directory", cause=e))


def write_config_file(conf_path: Path, content: str, description: str) -> Result[Path]:
    """Overwrite a configuration file with deterministic content."""
    try:
        conf_path.write_text(content)

        if platform.system() != "Windows":
            conf_path.chmod(0o600)

        return Result.ok(conf_path)
    except OSError as e:
        return Result.err(ToolError(f"Failed to write {description}", cause=e))


def write_gpg_conf(gnupghome: Path, content: str | None = None) -> Result[Path]:
    return write_config_file(gnupghome / "gpg.conf", content or GPG_CONF, "GPG configuration")


def write_dirmngr_conf(gnupghome: Path, content: str | None = None) -> Result[Path]:
    return write_config_file(
        gnupghome / "dirmngr.conf", content or DIRMNGR_CONF, "dirmngr configuration"
    )


def write_gpg_agent_conf(gnupghome: Path, content: str) -> Result[Path]:
    return write_config_file(gnupghome / "gpg-agent.conf", content, "GPG agent configuration")


def append_shell_profile_line(profile: PlatformProfile) -> Result[bool]:
    """Append the SSH auth socket line unless the profile already has one.

    Returns Ok(True) when the line was appended, Ok(False) when it was
    already present.
    """
    profile_path = profile.shell_profile_path

    try:
        if profile_path.exists() and profile.profile_configured(
            profile_path.read_text(errors="replace")
        ):
            return Result.ok(False)

        with open(profile_path, "a") as f:
            f.write(f"\n{profile.shell_profile_line}\n")

        return Result.ok(True)
    except OSError as e:
        return Result.err(ToolError(f"Failed to update {profile_path}", cause=e))
