"""Command-line interface for proofvault."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Optional

import click

from proofvault.errors import ConfigError, SerializationError, ValidationError
from proofvault.proofs.canonical import canonical_json, canonicalize
from proofvault.proofs.payload import StructuredPayload, detect_payload, structured_from_field


@click.group()
def cli() -> None:
    """proofvault command suite."""


@cli.command("hash")
@click.argument("file", required=False, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "json_text", default=None, help="Hash JSON text instead of a file.")
@click.option("--verbose", "-v", is_flag=True, help="Also print the payload kind and canonical JSON.")
def hash_command(file: Optional[Path], json_text: Optional[str], verbose: bool) -> None:
    """Recompute the proof hash of FILE (or of --json text) offline.

    Files are treated exactly as uploads are: JSON content is canonicalized
    before hashing, anything else is hashed over its raw bytes.
    """
    if (file is None) == (json_text is None):
        raise click.UsageError("pass either FILE or --json")

    try:
        payload = structured_from_field(json_text) if json_text is not None else detect_payload(file.read_bytes())
        proof_hash = payload.proof_hash()
    except (ValidationError, SerializationError) as exc:
        raise click.ClickException(exc.message) from exc

    if not verbose:
        click.echo(proof_hash)
        return
    report = {"proofHash": proof_hash, "type": payload.kind, "sizeBytes": payload.size}
    if isinstance(payload, StructuredPayload):
        report["canonicalJson"] = canonical_json(canonicalize(payload.value))
    click.echo(json.dumps(report, indent=2, ensure_ascii=False))


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--reload", is_flag=True, help="Reload on code changes (development).")
def serve(host: str, port: int, reload: bool) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "proofvault.api.app:build_default_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


@cli.command("init-db")
def init_db_command() -> None:
    """Create the database tables for the configured DATABASE_URL."""
    from proofvault.config import get_settings
    from proofvault.db.store import RecordStore

    try:
        settings = get_settings()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    RecordStore.from_url(settings.database_url).create_all()
    click.echo(f"initialized {settings.database_url}")


@cli.command("sweep-anchors")
@click.option("--limit", default=100, show_default=True, type=int)
def sweep_anchors(limit: int) -> None:
    """Re-poll anchors left pending and print a summary."""
    from proofvault.bootstrap import build_services
    from proofvault.config import get_settings
    from proofvault.observability import configure_logging

    try:
        settings = get_settings()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    configure_logging(settings.log_level)
    services = build_services(settings)
    summary = asyncio.run(services.anchors.sweep_pending(limit=limit))
    click.echo(json.dumps(summary, indent=2))


if __name__ == "__main__":
    cli()
