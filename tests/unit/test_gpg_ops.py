"""Tests for GPG operations."""

from __future__ import annotations

from pathlib import Path

import pytest

from yubikey_setup.errors import GPGOperationError, ToolError
from yubikey_setup.gpg_ops import (
    KNOWN_KEY_MARKER,
    TRUST_COMMAND_SCRIPT,
    GPGOperations,
    contains_known_key,
    parse_primary_key_id,
)


class TestParsePrimaryKeyId:
    """Test key id extraction from gpg --list-keys output."""

    def test_single_pub_line(self):
        assert parse_primary_key_id("pub   rsa4096/0x1234567890ABCDEF 2023-01-01 [SC]") == (
            "0x1234567890ABCDEF"
        )

    def test_first_pub_line_wins(self):
        output = (
            "/home/jdoe/.gnupg/pubring.kbx\n"
            "pub   ed25519/0xAAAAAAAAAAAAAAAA 2022-01-01 [SC]\n"
            "uid   [ultimate] John Doe\n"
            "pub   rsa4096/0xBBBBBBBBBBBBBBBB 2023-01-01 [SC]\n"
        )
        assert parse_primary_key_id(output) == "0xAAAAAAAAAAAAAAAA"

    @pytest.mark.parametrize(
        "output",
        ["", "uid   John Doe\n", "pub\n", "pub   rsa4096 2023-01-01\n"],
    )
    def test_no_key_id(self, output):
        assert parse_primary_key_id(output) is None


class TestKnownKey:
    def test_marker_present(self):
        assert contains_known_key(f"pub   rsa4096/{KNOWN_KEY_MARKER} 2020-01-01 [SC]\n")

    def test_marker_absent(self):
        assert not contains_known_key("pub   rsa4096/0x1234567890ABCDEF\n")

    def test_key_already_imported_false_when_listing_fails(self, blank_runner):
        blank_runner.script(["gpg", "--list-keys"], (2, KNOWN_KEY_MARKER))
        assert not GPGOperations(blank_runner).key_already_imported()


class TestImportKey:
    def test_import_success(self, blank_runner, tmp_path: Path):
        key = tmp_path / "public.key"
        assert GPGOperations(blank_runner).import_key(key).unwrap() is True
        assert blank_runner.calls == [("gpg", "--import", str(key))]

    def test_not_changed_is_not_an_error(self, blank_runner, tmp_path: Path):
        blank_runner.script(["gpg", "--import"], (2, "", "gpg: key 0x3996B9E90711DD51: \"x\" not changed"))
        assert GPGOperations(blank_runner).import_key(tmp_path / "k").unwrap() is False

    def test_import_failure(self, blank_runner, tmp_path: Path):
        blank_runner.script(["gpg", "--import"], (2, "", "gpg: no valid OpenPGP data found."))
        error = GPGOperations(blank_runner).import_key(tmp_path / "k").unwrap_err()
        assert isinstance(error, ToolError)
        assert "no valid OpenPGP data" in error.output


class TestDiscoverKeyId:
    def test_discovers_first_key(self, blank_runner):
        blank_runner.script(
            ["gpg2", "--list-keys", "--keyid-format", "0xlong"],
            (0, "pub   rsa4096/0x1234567890ABCDEF 2023-01-01 [SC]\n"),
        )
        assert GPGOperations(blank_runner).discover_key_id().unwrap() == "0x1234567890ABCDEF"

    def test_no_pub_line(self, blank_runner):
        error = GPGOperations(blank_runner).discover_key_id().unwrap_err()
        assert isinstance(error, GPGOperationError)
        assert str(error) == "Could not determine PGP Key ID"


class TestTrust:
    def test_feeds_trust_script(self, blank_runner):
        assert GPGOperations(blank_runner).set_ultimate_trust("0xABC").is_ok()
        assert blank_runner.inputs == [
            (("gpg", "--edit-key", "0xABC", "--command-fd", "0"), TRUST_COMMAND_SCRIPT)
        ]

    def test_failure(self, blank_runner):
        blank_runner.script(["gpg", "--edit-key"], (2, ""))
        assert GPGOperations(blank_runner).set_ultimate_trust("0xABC").is_err()


class TestEncryptionRoundTrip:
    def test_round_trip(self, blank_runner):
        blank_runner.script(["gpg2", "--encrypt"], (0, "-----BEGIN PGP MESSAGE-----\n"))
        blank_runner.script(["gpg2", "--decrypt"], (0, "hello\n"))

        result = GPGOperations(blank_runner).encryption_round_trip("0xABC", "hello\n")

        assert result.unwrap() == "hello\n"
        assert blank_runner.inputs[1] == (("gpg2", "--decrypt"), "-----BEGIN PGP MESSAGE-----\n")

    def test_empty_ciphertext_fails(self, blank_runner):
        result = GPGOperations(blank_runner).encryption_round_trip("0xABC")
        assert "Encryption to 0xABC failed" in str(result.unwrap_err())
        assert not blank_runner.ran("gpg2", "--decrypt")

    def test_empty_plaintext_fails(self, blank_runner):
        blank_runner.script(["gpg2", "--encrypt"], (0, "armored"))
        result = GPGOperations(blank_runner).encryption_round_trip("0xABC")
        assert "Decryption for 0xABC failed" in str(result.unwrap_err())


class TestQueries:
    def test_card_status_failure(self, blank_runner):
        blank_runner.script(["gpg2", "--card-status"], (2, "", "gpg: selecting card failed"))
        assert GPGOperations(blank_runner).card_status().is_err()

    def test_export_public_key(self, blank_runner):
        blank_runner.script(["gpg", "--export", "-a", "0xABC"], (0, "-----BEGIN PGP PUBLIC KEY BLOCK-----\n"))
        assert GPGOperations(blank_runner).export_public_key("0xABC").unwrap().startswith("-----BEGIN")

    def test_list_secret_keys(self, blank_runner):
        blank_runner.script(["gpg", "--list-secret-keys"], (0, "sec>  rsa4096/0xABC\n"))
        assert "sec>" in GPGOperations(blank_runner).list_secret_keys().unwrap()
