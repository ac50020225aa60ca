"""
main.py – Command-line entry point.

Each command builds an AppConfig and a VaultSession, asks for the PIN
with hidden input when the vault has to be opened, performs one action,
and locks the session again on exit.  All vault logic lives in the
specialised modules:

  config.py   – AppConfig      : constants, data dir, config I/O, logging
  crypto.py   – CryptoManager  : PIN hash, PBKDF2 key derivation, Fernet
  kvstore.py  – key-value stores (file-backed and in-memory)
  auth.py     – AuthVault      : PIN setup / verify / reset, biometrics flag
  storage.py  – RecordStore    : encrypted credential records
  session.py  – VaultSession   : ties AuthVault and RecordStore together
  export.py   – CSV / HTML / text / XLSX exports
  passwords.py – password generator and strength check

To run the application:
    password-saver --help
"""

import logging
import sys
from typing import Optional

import click

from config import APP_VERSION, AppConfig
from errors import VaultError
from export import EXPORTERS, export_xlsx
from passwords import check_password_strength, generate_password
from session import VaultSession
from storage import CredentialRecord, LoadStatus

logger = logging.getLogger("PasswordSaver")

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _session(ctx: click.Context) -> VaultSession:
    config: AppConfig = ctx.obj["config"]
    session = VaultSession.from_config(config)
    ctx.call_on_close(session.lock)
    return session


def _unlock(ctx: click.Context) -> VaultSession:
    """Open the vault with a prompted PIN or exit with an error."""
    session = _session(ctx)
    if not session.auth.is_pin_configured():
        _fail("No PIN is configured yet; run 'init' first.")

    pin = click.prompt("PIN", hide_input=True)
    try:
        unlocked = session.unlock(pin)
    except VaultError as exc:
        _fail(str(exc))
    if not unlocked:
        _fail("Incorrect PIN.")

    if session.last_load_status is LoadStatus.DECRYPT_FAILED:
        click.echo("Warning: stored records could not be decrypted with this PIN.", err=True)
    elif session.last_load_status is LoadStatus.PARSE_FAILED:
        click.echo(
            "Warning: stored records are damaged; they are left untouched and the vault "
            "is read-only. Run 'clear' to discard them.",
            err=True,
        )
    return session


def _print_record(record: CredentialRecord, reveal: bool) -> None:
    click.echo(f"ID:          {record.id}")
    click.echo(f"App/Website: {record.app_name}")
    click.echo(f"Username:    {record.username}")
    click.echo(f"Email/Phone: {record.email_or_phone}")
    click.echo(f"Password:    {record.password if reveal else '********'}")
    click.echo(f"Created:     {record.created_at}")


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option(
    "--data-dir",
    envvar="PASSWORD_SAVER_DATA_DIR",
    type=click.Path(file_okay=False),
    help="Directory for the vault files (defaults to the user data dir).",
)
@click.version_option(APP_VERSION)
@click.pass_context
def cli(ctx: click.Context, data_dir: Optional[str]) -> None:
    """PasswordSaver – a PIN-protected local password vault."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = AppConfig(data_dir)


@cli.command("init")
@click.pass_context
def init_cmd(ctx: click.Context) -> None:
    """Create the PIN for a new vault."""
    session = _session(ctx)
    if session.auth.is_pin_configured():
        _fail("A PIN is already configured. Use 'change-pin' or 'reset-pin'.")

    pin = click.prompt("New PIN", hide_input=True, confirmation_prompt=True)
    try:
        status = session.setup(pin)
    except VaultError as exc:
        _fail(str(exc))

    click.echo("Vault created.")
    if status is LoadStatus.DECRYPT_FAILED:
        click.echo("Records from a previous PIN remain in storage but cannot be opened.")


@cli.command("list")
@click.option("--search", "-s", default="", help="Filter by app, username or email/phone.")
@click.pass_context
def list_cmd(ctx: click.Context, search: str) -> None:
    """List stored records."""
    records = _unlock(ctx).vault().search(search)
    if not records:
        click.echo("No passwords saved.")
        return
    for record in sorted(records, key=lambda r: r.app_name.casefold()):
        click.echo(f"{record.id}\t{record.app_name}\t{record.username}\t{record.email_or_phone}")


@cli.command("add")
@click.option("--app", "app_name", required=True, help="App or website name.")
@click.option("--username", default="", help="Account username.")
@click.option("--email", "email_or_phone", default="", help="Email address or phone number.")
@click.option("--generate", is_flag=True, help="Generate a random password.")
@click.pass_context
def add_cmd(ctx: click.Context, app_name: str, username: str, email_or_phone: str, generate: bool) -> None:
    """Add a new record."""
    session = _unlock(ctx)
    if generate:
        config: AppConfig = ctx.obj["config"]
        password = generate_password(int(config.get("generated_password_length", 12)))
    else:
        password = click.prompt("Password", hide_input=True, confirmation_prompt=True)

    record = CredentialRecord.create(app_name, username, email_or_phone, password)
    try:
        session.vault().add(record)
    except VaultError as exc:
        _fail(str(exc))

    score, label = check_password_strength(password)
    click.echo(f"Saved {record.id} (password strength: {label}, {score}/4).")


@cli.command("show")
@click.argument("record_id")
@click.option("--reveal", is_flag=True, help="Print the password in clear text.")
@click.pass_context
def show_cmd(ctx: click.Context, record_id: str, reveal: bool) -> None:
    """Show one record."""
    record = _unlock(ctx).vault().get_by_id(record_id)
    if record is None:
        _fail(f"No record with id {record_id}.")
    _print_record(record, reveal)


@cli.command("update")
@click.argument("record_id")
@click.option("--app", "app_name", help="New app or website name.")
@click.option("--username", help="New username.")
@click.option("--email", "email_or_phone", help="New email address or phone number.")
@click.option("--password", "change_password", is_flag=True, help="Prompt for a new password.")
@click.pass_context
def update_cmd(
    ctx: click.Context,
    record_id: str,
    app_name: Optional[str],
    username: Optional[str],
    email_or_phone: Optional[str],
    change_password: bool,
) -> None:
    """Edit an existing record."""
    vault = _unlock(ctx).vault()
    record = vault.get_by_id(record_id)
    if record is None:
        _fail(f"No record with id {record_id}.")

    changes = {
        "app_name": app_name,
        "username": username,
        "email_or_phone": email_or_phone,
    }
    changes = {k: v for k, v in changes.items() if v is not None}
    if change_password:
        changes["password"] = click.prompt("New password", hide_input=True, confirmation_prompt=True)
    if not changes:
        click.echo("Nothing to change.")
        return

    try:
        vault.update(record.with_changes(**changes))
    except VaultError as exc:
        _fail(str(exc))
    click.echo(f"Updated {record_id}.")


@cli.command("remove")
@click.argument("record_id")
@click.pass_context
def remove_cmd(ctx: click.Context, record_id: str) -> None:
    """Delete one record."""
    try:
        removed = _unlock(ctx).vault().remove(record_id)
    except VaultError as exc:
        _fail(str(exc))
    if not removed:
        _fail(f"No record with id {record_id}.")
    click.echo(f"Removed {record_id}.")


@cli.command("clear")
@click.confirmation_option(prompt="Delete ALL saved passwords?")
@click.pass_context
def clear_cmd(ctx: click.Context) -> None:
    """Delete every record."""
    try:
        vault = _unlock(ctx).vault()
        vault.discard_damaged()
        vault.clear_all()
    except VaultError as exc:
        _fail(str(exc))
    click.echo("All passwords have been deleted.")


@cli.command("export")
@click.option(
    "--format", "fmt",
    type=click.Choice(["csv", "html", "text", "xlsx"]),
    default="csv",
    show_default=True,
)
@click.option("--output", "-o", type=click.Path(dir_okay=False, writable=True), required=True)
@click.pass_context
def export_cmd(ctx: click.Context, fmt: str, output: str) -> None:
    """Write a PLAINTEXT export of every record."""
    records = _unlock(ctx).vault().records
    config: AppConfig = ctx.obj["config"]
    try:
        if fmt == "xlsx":
            with open(output, "wb") as fh:
                fh.write(export_xlsx(records, config.get("excel_column_widths")))
        else:
            with open(output, "w", encoding="utf-8", newline="") as fh:
                fh.write(EXPORTERS[fmt](records))
    except OSError as exc:
        logger.exception("Export to %s failed", output)
        _fail(f"Could not write {output}: {exc}")
    click.echo(f"Exported {len(records)} record(s) to {output}. This file is NOT encrypted.")


@cli.command("change-pin")
@click.pass_context
def change_pin_cmd(ctx: click.Context) -> None:
    """Change the PIN and re-encrypt all records."""
    session = _session(ctx)
    if not session.auth.is_pin_configured():
        _fail("No PIN is configured yet; run 'init' first.")
    old_pin = click.prompt("Current PIN", hide_input=True)
    new_pin = click.prompt("New PIN", hide_input=True, confirmation_prompt=True)
    try:
        changed = session.change_pin(old_pin, new_pin)
    except VaultError as exc:
        _fail(str(exc))
    if not changed:
        _fail("Incorrect PIN.")
    click.echo("PIN changed.")


@cli.command("reset-pin")
@click.confirmation_option(
    prompt="Resetting the PIN makes every saved password permanently unreadable. Continue?"
)
@click.pass_context
def reset_pin_cmd(ctx: click.Context) -> None:
    """Forget the PIN (saved passwords are lost)."""
    try:
        _session(ctx).reset()
    except VaultError as exc:
        _fail(str(exc))
    click.echo("PIN reset. Run 'init' to create a new one.")


@cli.command("biometrics")
@click.pass_context
def biometrics_cmd(ctx: click.Context) -> None:
    """Toggle biometric re-entry."""
    session = _unlock(ctx)
    try:
        enabled = session.auth.toggle_biometrics()
    except VaultError as exc:
        _fail(str(exc))
    click.echo(f"Biometric unlock {'enabled' if enabled else 'disabled'}.")


@cli.command("generate")
@click.option("--length", "-l", type=click.IntRange(4, 128), default=None, help="Password length.")
@click.pass_context
def generate_cmd(ctx: click.Context, length: Optional[int]) -> None:
    """Print a random password."""
    config: AppConfig = ctx.obj["config"]
    click.echo(generate_password(length or int(config.get("generated_password_length", 12))))


@cli.command("strength")
def strength_cmd() -> None:
    """Rate a password."""
    password = click.prompt("Password", hide_input=True)
    score, label = check_password_strength(password)
    click.echo(f"{label} ({score}/4)")


def main() -> None:
    """Run the command-line interface."""
    cli(obj={})


if __name__ == "__main__":
    main()
