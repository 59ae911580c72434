"""Command line entry point for gmail_loopback.

    python -m gmail_loopback login     # browser consent, tokens stored encrypted
    python -m gmail_loopback status
    python -m gmail_loopback profile   # authenticated Gmail API call
    python -m gmail_loopback logout
"""

from __future__ import annotations

import logging
import os
import sys

import typer
from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError

from gmail_loopback.auth import AuthSession, EncryptedFileTokenStore
from gmail_loopback.config import OAuthConfig
from gmail_loopback.gmail import GmailClient
from gmail_loopback.utils.errors import GmailLoopbackError

app = typer.Typer(
    name="gmail-loopback",
    help="Authorize a desktop app against Gmail and manage its tokens",
    no_args_is_help=True,
)


def configure_logging() -> None:
    """Configure logging to stderr.

    Respects LOG_LEVEL env var (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = logging.getLevelNamesMapping().get(log_level_str, logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    # Reduce noise from HTTP and Google libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("googleapiclient").setLevel(logging.WARNING)
    logging.getLogger("google.auth").setLevel(logging.WARNING)


def validate_environment() -> bool:
    """Validate required environment variables.

    Returns:
        True if all required variables are present and valid, False otherwise.
    """
    logger = logging.getLogger(__name__)

    required = ["GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "TOKEN_ENCRYPTION_KEY"]
    missing = [var for var in required if not os.getenv(var)]

    if missing:
        logger.error("Missing required environment variables: %s", ", ".join(missing))
        return False

    # TOKEN_ENCRYPTION_KEY must be 64 hex chars (256 bits)
    key = os.getenv("TOKEN_ENCRYPTION_KEY", "")
    if len(key) != 64:
        logger.error("TOKEN_ENCRYPTION_KEY must be 64 hex characters (256 bits)")
        return False

    try:
        bytes.fromhex(key)
    except ValueError:
        logger.error("TOKEN_ENCRYPTION_KEY must be valid hexadecimal")
        return False

    return True


def _build_session() -> AuthSession:
    if not validate_environment():
        logging.getLogger(__name__).error("Environment validation failed. Exiting.")
        raise typer.Exit(code=1)
    try:
        config = OAuthConfig.from_env()
    except (PydanticValidationError, ValueError) as e:
        logging.getLogger(__name__).error("Invalid OAuth configuration: %s", e)
        raise typer.Exit(code=1) from e
    return AuthSession(config, EncryptedFileTokenStore())


@app.callback()
def main() -> None:
    """Load .env and configure logging before any command runs."""
    load_dotenv()
    configure_logging()


@app.command()
def login(
    timeout: float = typer.Option(120, help="Seconds to wait for consent"),
) -> None:
    """Open the consent page and store the resulting tokens."""
    session = _build_session()
    try:
        credential = session.login(timeout=timeout)
    except GmailLoopbackError as e:
        typer.echo(f"Login failed: {e}", err=True)
        raise typer.Exit(code=1) from e
    typer.echo(f"Authorized. Access token valid until {credential.expires_at.isoformat()}")


@app.command()
def status() -> None:
    """Show whether a credential is stored and when it expires."""
    session = _build_session()
    credential = session.tokens.load()
    if credential is None:
        typer.echo("Not authorized. Run `login` first.")
        raise typer.Exit(code=1)
    typer.echo(f"Authorized. Access token expires at {credential.expires_at.isoformat()}")
    if credential.scopes:
        typer.echo("Scopes: " + " ".join(credential.scopes))


@app.command()
def profile() -> None:
    """Fetch the mailbox profile with the stored credential."""
    session = _build_session()
    try:
        data = GmailClient(session).get_profile()
    except GmailLoopbackError as e:
        typer.echo(f"Request failed: {e}", err=True)
        raise typer.Exit(code=1) from e
    typer.echo(f"{data.get('emailAddress')}: {data.get('messagesTotal')} messages")


@app.command()
def logout(
    revoke: bool = typer.Option(True, help="Revoke the token at Google first"),
) -> None:
    """Revoke and delete the stored credential."""
    session = _build_session()
    try:
        had_credentials = session.logout(revoke=revoke)
    except GmailLoopbackError as e:
        typer.echo(f"Local credential removed, but revocation failed: {e}", err=True)
        raise typer.Exit(code=1) from e
    typer.echo("Logged out." if had_credentials else "No credentials were stored.")


if __name__ == "__main__":
    app()
