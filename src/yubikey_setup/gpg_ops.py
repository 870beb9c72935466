from __future__ import annotations

from pathlib import Path

from .commands import CommandRunner
from .errors import GPGOperationError, ToolError
from .types import Result

# Organisation key shipped with every employee token; its presence means the
# public key was already imported.
KNOWN_KEY_MARKER = "0x3996B9E90711DD51"

# Command stream for `gpg --edit-key --command-fd 0`: trust, level 5
# (ultimate), confirm, save.
TRUST_COMMAND_SCRIPT = "trust\n5\ny\nsave\n"

ENCRYPTION_TEST_PAYLOAD = "yubikey-setup encryption round-trip test\n"

DRY_RUN_KEY_ID = "0x1234567890ABCDEF"


def contains_known_key(list_keys_output: str, marker: str = KNOWN_KEY_MARKER) -> bool:
    """Check `gpg --list-keys` output for an already imported key."""
    return marker in list_keys_output


def parse_primary_key_id(list_keys_output: str) -> str | None:
    """Extract the key id from `gpg2 --list-keys --keyid-format 0xlong` output.

    The id is the token after the slash in the second field of the first
    line starting with ``pub``:

        pub   rsa4096/0x1234567890ABCDEF 2023-01-01 [SC]  ->  0x1234567890ABCDEF
    """
    for line in list_keys_output.splitlines():
        if not line.startswith("pub"):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        key_parts = parts[1].split("/")
        if len(key_parts) >= 2 and key_parts[1].strip():
            return key_parts[1].split()[0]
    return None


class GPGOperations:
    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    def list_keys(self) -> Result[str]:
        result = self._runner.run_capture(["gpg", "--list-keys"])
        if not result.ok:
            return Result.err(GPGOperationError("Could not list GPG keys", gpg_output=result.stderr))
        return Result.ok(result.stdout)

    def list_secret_keys(self) -> Result[str]:
        result = self._runner.run_capture(["gpg", "--list-secret-keys"])
        if not result.ok:
            return Result.err(
                GPGOperationError("Could not list GPG secret keys", gpg_output=result.stderr)
            )
        return Result.ok(result.stdout)

    def key_already_imported(self) -> bool:
        listing = self.list_keys()
        return listing.is_ok() and contains_known_key(listing.unwrap())

    def import_key(self, key_path: Path) -> Result[bool]:
        """Import a public key file.

        Returns Ok(True) on import, Ok(False) when gpg reports the key as
        not changed.
        """
        command = ["gpg", "--import", str(key_path)]
        result = self._runner.run_capture(command)
        if result.ok:
            return Result.ok(True)

        output = f"{result.stdout}\n{result.stderr}"
        if "not changed" in output:
            return Result.ok(False)

        return Result.err(
            ToolError(f"Failed to import GPG key from {key_path}", command=command, output=output)
        )

    def card_status(self) -> Result[None]:
        result = self._runner.run(["gpg2", "--card-status"])
        if not result.ok:
            return Result.err(GPGOperationError("Card status query failed", gpg_output=result.stderr))
        return Result.ok(None)

    def discover_key_id(self) -> Result[str]:
        result = self._runner.run_capture(["gpg2", "--list-keys", "--keyid-format", "0xlong"])
        if not result.ok:
            return Result.err(GPGOperationError("Could not list GPG keys", gpg_output=result.stderr))

        key_id = parse_primary_key_id(result.stdout)
        if not key_id:
            return Result.err(
                GPGOperationError("Could not determine PGP Key ID", gpg_output=result.stdout)
            )
        return Result.ok(key_id)

    def set_ultimate_trust(self, identifier: str) -> Result[None]:
        """Drive `gpg --edit-key` with a scripted command stream."""
        command = ["gpg", "--edit-key", identifier, "--command-fd", "0"]
        result = self._runner.run_with_input(command, TRUST_COMMAND_SCRIPT)
        if not result.ok:
            return Result.err(
                ToolError(
                    f"Failed to set trust for {identifier}", command=command, output=result.stderr
                )
            )
        return Result.ok(None)

    def encryption_round_trip(
        self, recipient: str, payload: str = ENCRYPTION_TEST_PAYLOAD
    ) -> Result[str]:
        """Encrypt payload to recipient and decrypt it again."""
        encrypt_command = ["gpg2", "--encrypt", "--armor", "--recipient", recipient]
        encrypted = self._runner.run_with_input(encrypt_command, payload)
        if not encrypted.ok or not encrypted.stdout.strip():
            return Result.err(
                ToolError(
                    f"Encryption to {recipient} failed",
                    command=encrypt_command,
                    output=encrypted.stderr,
                )
            )

        decrypt_command = ["gpg2", "--decrypt"]
        decrypted = self._runner.run_with_input(decrypt_command, encrypted.stdout)
        if not decrypted.ok or not decrypted.stdout.strip():
            return Result.err(
                ToolError(
                    f"Decryption for {recipient} failed",
                    command=decrypt_command,
                    output=decrypted.stderr,
                )
            )

        return Result.ok(decrypted.stdout)

    def export_public_key(self, key_id: str) -> Result[str]:
        result = self._runner.run_capture(["gpg", "--export", "-a", key_id])
        if not result.ok:
            return Result.err(
                GPGOperationError(f"Could not export key {key_id}", gpg_output=result.stderr)
            )
        return Result.ok(result.stdout)
