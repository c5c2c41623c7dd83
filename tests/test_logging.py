from __future__ import annotations

import json

import pytest
import structlog

from locker.logging import REDACTED, configure_logging, scrub_secrets


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


def test_scrub_secrets_redacts_sensitive_keys() -> None:
    event = scrub_secrets(
        None,
        "info",
        {"event": "vault.decrypted", "plaintext": "hello", "pin": "1234", "identity": "SecretMessage"},
    )
    assert event["plaintext"] == REDACTED
    assert event["pin"] == REDACTED
    assert event["identity"] == "SecretMessage"


def test_scrub_secrets_reduces_bytes_to_length() -> None:
    event = scrub_secrets(None, "info", {"event": "key.generated", "point": b"\x04" + bytes(64)})
    assert event["point"] == "<65 bytes>"


def test_configured_output_is_scrubbed_json(capsys: pytest.CaptureFixture[str]) -> None:
    configure_logging("info")
    structlog.get_logger("locker.test").error("vault.decrypt_failed", ciphertext="QUJD", identity="notes")
    line = capsys.readouterr().err.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["msg"] == "vault.decrypt_failed"
    assert record["level"] == "error"
    assert record["component"] == "locker.test"
    assert record["ciphertext"] == REDACTED
    assert "QUJD" not in line
