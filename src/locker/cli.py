# Typer-based command line front end for a single-identity vault.
from __future__ import annotations

import sys
from pathlib import Path
from typing import NoReturn, Optional

import click
import typer

from .auth.gate import PinGate
from .config import AppConfig, dump_default_config, load_config
from .core.exceptions import ConfigError, CryptoError, LockerError
from .logging import configure_logging
from .paths import runtime_config_dir
from .services.dispatcher import VaultDispatcher
from .services.vault import KeyVault
from .version import __version__

app = typer.Typer(help="Locker: encrypt short text under an authentication-gated key")

REMOVE_WARNING = "Are you sure you want to remove key? You will not be able to decrypt encrypted data"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"locker {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", metavar="PATH", help="YAML configuration file"),
    identity: Optional[str] = typer.Option(None, "--identity", "-n", help="Key name to use"),
    version: bool = typer.Option(False, "--version", callback=_version_callback, is_eager=True),
) -> None:
    try:
        cfg = load_config(config)
    except ConfigError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2)
    if identity is not None:
        cfg = cfg.model_copy(update={"identity": identity})
    configure_logging(cfg.logging.normalized_level())
    ctx.obj = cfg


def _config() -> AppConfig:
    return click.get_current_context().obj


def _vault() -> KeyVault:
    cfg = _config()
    try:
        return KeyVault(cfg.identity, config=cfg)
    except LockerError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2)


def _fail(exc: CryptoError) -> NoReturn:
    typer.echo(f"Error: {exc.description}", err=True)
    raise typer.Exit(code=1)


def _read_argument(value: str) -> str:
    if value == "-":
        value = sys.stdin.read().rstrip("\r\n")
    if not value:
        typer.echo("Error: nothing to process", err=True)
        raise typer.Exit(code=2)
    return value


@app.command()
def status() -> None:
    """Report whether a key exists for the identity"""
    vault = _vault()
    state = "present" if vault.has_key() else "absent"
    typer.echo(f"{vault.identity}: key {state}")


@app.command()
def encrypt(text: str = typer.Argument(..., help="Text to encrypt, or - for stdin")) -> None:
    """Encrypt text and print base64 ciphertext"""
    vault = _vault()
    try:
        typer.echo(vault.encrypt(_read_argument(text)))
    except CryptoError as exc:
        _fail(exc)


@app.command()
def decrypt(ciphertext: str = typer.Argument(..., help="Base64 ciphertext, or - for stdin")) -> None:
    """Decrypt base64 ciphertext; may ask for authentication"""
    data = _read_argument(ciphertext)
    with VaultDispatcher(_vault()) as dispatcher:
        outcome = dispatcher.decrypt(data, lambda _outcome: None).result()
    try:
        typer.echo(outcome.unwrap())
    except CryptoError as exc:
        _fail(exc)


@app.command("remove-key")
def remove_key(yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")) -> None:
    """Delete the key; existing ciphertexts become undecryptable"""
    vault = _vault()
    if not vault.has_key():
        typer.echo(f"{vault.identity}: no key to remove")
        return
    if not yes:
        typer.confirm(f"Remove key? {REMOVE_WARNING}", abort=True)
    removed = vault.remove_key()
    typer.echo(f"{vault.identity}: key removed" if removed else f"{vault.identity}: no key to remove")


@app.command("enroll-pin")
def enroll_pin(yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation")) -> None:
    """Set or replace the PIN guarding private-key use"""
    cfg = _config()
    if cfg.auth.gate != "pin":
        typer.echo(f"Error: authentication gate is {cfg.auth.gate!r}, not 'pin'", err=True)
        raise typer.Exit(code=2)
    gate = PinGate(cfg.pin_file(), kdf=cfg.auth.kdf, max_attempts=cfg.auth.max_attempts)
    if gate.is_enrolled() and not yes:
        typer.confirm("Replacing the PIN invalidates existing keys. Continue?", abort=True)
    pin = typer.prompt("New PIN", hide_input=True, confirmation_prompt=True)
    try:
        gate.enroll(pin)
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo("PIN enrolled")


@app.command("init-config")
def init_config(
    target: Path = typer.Option(runtime_config_dir() / "config.yaml", "--path", help="Where to write"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
) -> None:
    """Write the default configuration file"""
    if target.exists() and not force:
        typer.echo(f"Error: {target} already exists", err=True)
        raise typer.Exit(code=1)
    dump_default_config(target)
    typer.echo(f"Wrote {target}")


if __name__ == "__main__":
    app()
