"""Click CLI entry point for awakenfetch.

All commands are thin orchestration wrappers — fetching, classification and
rendering live in the adapters, registry, output and stream modules.

Exit codes:
  0 — success (including a partial result after Ctrl-C)
  1 — generic error
  2 — API error, rate limit, invalid key
  3 — network error
  4 — invalid address or unsupported chain
  5 — config error or missing API key
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shutil
import signal
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import click

from awakenfetch import __version__
from awakenfetch.adapters.base import ChainAdapter, PerpsAdapter
from awakenfetch.classify import parse_iso_datetime
from awakenfetch.config import (
    AwakenFetchConfig,
    get_default_config_path,
    load_config,
    save_config,
)
from awakenfetch.exceptions import (
    AwakenFetchError,
    ConfigInvalidError,
    UnsupportedChainError,
    ValidationError,
)
from awakenfetch.models import FetchOptions
from awakenfetch.output import (
    build_csv_filename,
    format_chain_table,
    format_json,
    format_transactions,
    mask_api_key,
)
from awakenfetch.registry import AdapterRegistry, build_registry
from awakenfetch.stream import emit_event, stream_transactions

logger = logging.getLogger(__name__)

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_SECRET_FIELDS = ("api_key", "api_secret")


# ── Error handler ─────────────────────────────────────────────────────────────


def _output_error(err: AwakenFetchError | Exception) -> None:
    """Write error JSON to stderr."""
    if isinstance(err, AwakenFetchError):
        payload = err.to_dict()
        exit_code = err.exit_code
    else:
        payload = {"error": "unknown_error", "message": str(err), "details": {}}
        exit_code = 1
    sys.stderr.write(json.dumps(payload) + "\n")
    sys.stderr.flush()
    sys.exit(exit_code)


# ── Helpers ───────────────────────────────────────────────────────────────────


def _get_adapter(registry: AdapterRegistry, chain: str) -> ChainAdapter:
    adapter = registry.get(chain.lower())
    if adapter is None:
        raise UnsupportedChainError(
            f"Unsupported chain {chain!r}. Supported: {', '.join(registry.chain_ids())}",
            details={"chain": chain},
        )
    return adapter


def _parse_date(value: str | None, end_of_day: bool = False) -> datetime | None:
    """
    YYYY-MM-DD or a full ISO timestamp → aware UTC datetime.

    A bare date used as an upper bound covers the whole day.
    """
    if value is None:
        return None
    if _DATE_ONLY_RE.match(value):
        day = datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        if end_of_day:
            return day + timedelta(days=1) - timedelta(microseconds=1)
        return day
    try:
        return parse_iso_datetime(value)
    except ValueError as e:
        raise ValidationError(
            f"Invalid date {value!r}. Use YYYY-MM-DD or an ISO-8601 timestamp.",
            details={"value": value},
        ) from e


def _build_options(
    from_date: str | None, to_date: str | None, limit: int | None = None
) -> FetchOptions:
    options = FetchOptions(
        from_date=_parse_date(from_date),
        to_date=_parse_date(to_date, end_of_day=True),
        limit=limit,
        cancel_event=asyncio.Event(),
    )
    if options.from_date and options.to_date and options.from_date > options.to_date:
        raise ValidationError(
            "--from must not be later than --to",
            details={"from": from_date, "to": to_date},
        )
    return options


def _install_cancel_handler(options: FetchOptions) -> None:
    """First Ctrl-C stops paging and keeps what was collected so far."""
    if options.cancel_event is None:
        return
    try:
        asyncio.get_running_loop().add_signal_handler(signal.SIGINT, options.cancel_event.set)
    except NotImplementedError:
        # No loop signal handlers on this platform; Ctrl-C aborts outright
        logger.debug("SIGINT handler not supported, partial results disabled")


def _require_perps(adapter: ChainAdapter) -> PerpsAdapter:
    if not isinstance(adapter, PerpsAdapter):
        raise ValidationError(
            f"{adapter.chain_name} does not export perpetuals activity",
            details={"chain": adapter.chain_id},
        )
    return adapter


def _configure_logging(verbose: int) -> None:
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG if verbose > 1 else logging.INFO,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ── Root group ────────────────────────────────────────────────────────────────


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    envvar="AWAKENFETCH_CONFIG_PATH",
    default=None,
    help="Config file path (default: ~/.awakenfetch/config.toml)",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["csv", "json", "jsonl", "table"]),
    default=None,
    help="Output format (overrides config default)",
)
@click.option("-v", "--verbose", count=True, help="Log to stderr (-vv for debug)")
@click.pass_context
def cli(
    ctx: click.Context, config_path: str | None, output_format: str | None, verbose: int
) -> None:
    """AwakenFetch — wallet history to Awaken Tax CSV."""
    _configure_logging(verbose)
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except AwakenFetchError as e:
        # On config errors, use defaults (so config init still works)
        logger.warning("Config not loaded, using defaults: %s", e.message)
        config = AwakenFetchConfig()

    ctx.obj["config"] = config
    ctx.obj["format"] = output_format or config.output.default_format
    ctx.obj["config_path"] = config_path


# ── Chain commands ────────────────────────────────────────────────────────────


@cli.command("chains")
@click.option("--format", "fmt", type=click.Choice(["json", "table"]), default=None)
@click.pass_context
def chains_command(ctx: click.Context, fmt: str | None) -> None:
    """List supported chains and whether their credentials are configured."""
    config: AwakenFetchConfig = ctx.obj["config"]
    fmt = fmt or ("table" if ctx.obj.get("format") == "table" else "json")

    async def _run() -> None:
        registry = build_registry(config)
        try:
            chains = registry.list()
        finally:
            await registry.close()
        if fmt == "table":
            click.echo(format_chain_table(chains))
        else:
            click.echo(format_json([info.to_dict() for info in chains]))

    try:
        asyncio.run(_run())
    except AwakenFetchError as e:
        _output_error(e)


@cli.command("validate")
@click.argument("chain")
@click.argument("address")
@click.pass_context
def validate_command(ctx: click.Context, chain: str, address: str) -> None:
    """Check an address format for CHAIN without touching the network."""
    config: AwakenFetchConfig = ctx.obj["config"]

    async def _run() -> bool:
        registry = build_registry(config)
        try:
            adapter = _get_adapter(registry, chain)
            valid = adapter.validate_address(address)
            click.echo(
                json.dumps({"chain": adapter.chain_id, "address": address, "valid": valid})
            )
            return valid
        finally:
            await registry.close()

    try:
        valid = asyncio.run(_run())
    except AwakenFetchError as e:
        _output_error(e)
        return
    if not valid:
        sys.exit(ValidationError.exit_code)


@cli.command("explorer")
@click.argument("chain")
@click.argument("tx_hash")
@click.pass_context
def explorer_command(ctx: click.Context, chain: str, tx_hash: str) -> None:
    """Print the block-explorer URL for TX_HASH."""
    config: AwakenFetchConfig = ctx.obj["config"]

    async def _run() -> str:
        registry = build_registry(config)
        try:
            return _get_adapter(registry, chain).get_explorer_url(tx_hash)
        finally:
            await registry.close()

    try:
        click.echo(asyncio.run(_run()))
    except AwakenFetchError as e:
        _output_error(e)


# ── Fetch command ─────────────────────────────────────────────────────────────


@cli.command("fetch")
@click.argument("chain")
@click.argument("address")
@click.option("--from", "from_date", default=None, help="Start date (YYYY-MM-DD or ISO-8601)")
@click.option("--to", "to_date", default=None, help="End date, inclusive")
@click.option("--limit", default=None, type=click.IntRange(1), help="Page size override")
@click.option("--perps", is_flag=True, help="Export perpetuals activity (perps CSV layout)")
@click.option(
    "--output",
    "output_path",
    default=None,
    help="Output file, or - for stdout (default: CSV goes to a file in output.output_dir)",
)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["csv", "json", "jsonl", "table"]),
    default=None,
)
@click.pass_context
def fetch_command(
    ctx: click.Context,
    chain: str,
    address: str,
    from_date: str | None,
    to_date: str | None,
    limit: int | None,
    perps: bool,
    output_path: str | None,
    fmt: str | None,
) -> None:
    """Fetch ADDRESS's history on CHAIN and export it for Awaken Tax."""
    config: AwakenFetchConfig = ctx.obj["config"]
    fmt = fmt or ctx.obj.get("format", "csv")

    async def _run() -> dict[str, Any]:
        options = _build_options(from_date, to_date, limit)
        registry = build_registry(config)
        try:
            adapter = _get_adapter(registry, chain)
            _install_cancel_handler(options)

            def on_progress(batch: list[Any]) -> None:
                logger.info("%s: classified %d more transactions", adapter.chain_id, len(batch))

            options.on_progress = on_progress
            options.on_estimated_total = lambda total: logger.info(
                "%s: provider reports about %d records", adapter.chain_id, total
            )
            if perps:
                perps_adapter = _require_perps(adapter)
                txns: list[Any] = await perps_adapter.fetch_perp_transactions(address, options)
                rendered = (
                    perps_adapter.to_awaken_perp_csv(txns)
                    if fmt == "csv"
                    else format_transactions(txns, fmt, perps=True)
                )
            else:
                txns = await adapter.fetch_transactions(address, options)
                rendered = (
                    adapter.to_awaken_csv(txns)
                    if fmt == "csv"
                    else format_transactions(txns, fmt)
                )
            return {
                "chain": adapter.chain_id,
                "count": len(txns),
                "partial": options.cancelled,
                "rendered": rendered,
            }
        finally:
            await registry.close()

    try:
        result = asyncio.run(_run())
    except AwakenFetchError as e:
        _output_error(e)
        return

    if result["partial"]:
        logger.warning("Fetch cancelled; output holds the %d transactions collected", result["count"])

    target = output_path
    if target is None and fmt == "csv":
        filename = build_csv_filename(result["chain"], address.strip(), perps=perps)
        target = str(Path(config.output.output_dir).expanduser() / filename)

    if target is None or target == "-":
        click.echo(result["rendered"])
        return

    path = Path(target)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(result["rendered"], encoding="utf-8")
    click.echo(
        json.dumps(
            {
                "status": "written",
                "path": str(path),
                "count": result["count"],
                "partial": result["partial"],
            }
        )
    )


# ── Stream command ────────────────────────────────────────────────────────────


@cli.command("stream")
@click.argument("chain")
@click.argument("address")
@click.option("--from", "from_date", default=None, help="Start date (YYYY-MM-DD or ISO-8601)")
@click.option("--to", "to_date", default=None, help="End date, inclusive")
@click.option("--perps", is_flag=True, help="Stream perpetuals events")
@click.pass_context
def stream_command(
    ctx: click.Context,
    chain: str,
    address: str,
    from_date: str | None,
    to_date: str | None,
    perps: bool,
) -> None:
    """Stream classified transactions as JSONL batch / done / error events."""
    config: AwakenFetchConfig = ctx.obj["config"]

    async def _run() -> bool:
        options = _build_options(from_date, to_date)
        registry = build_registry(config)
        try:
            adapter = _get_adapter(registry, chain)
            if perps:
                _require_perps(adapter)
            _install_cancel_handler(options)
            ok = True
            async for event in stream_transactions(adapter, address, options, perps=perps):
                emit_event(event)
                if event["type"] == "error":
                    ok = False
            return ok
        finally:
            await registry.close()

    try:
        ok = asyncio.run(_run())
    except KeyboardInterrupt:
        sys.exit(130)
    except AwakenFetchError as e:
        _output_error(e)
        return
    if not ok:
        sys.exit(1)


# ── Config commands ───────────────────────────────────────────────────────────


@cli.group("config")
def config_group() -> None:
    """Manage awakenfetch configuration."""


@config_group.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing config")
@click.pass_context
def config_init(ctx: click.Context, force: bool) -> None:
    """Initialize default config at ~/.awakenfetch/config.toml."""
    provided = ctx.obj.get("config_path")
    config_path = Path(provided).expanduser() if provided else get_default_config_path()

    if config_path.exists() and not force:
        click.echo(
            json.dumps(
                {
                    "status": "already_exists",
                    "config_path": str(config_path),
                    "hint": "Use --force to reinitialize",
                }
            )
        )
        return

    status = "initialized"
    backup = None

    if config_path.exists() and force:
        backup = str(config_path) + ".bak"
        shutil.copy2(config_path, backup)
        status = "reinitialized"

    save_config(AwakenFetchConfig(), str(config_path))

    result: dict[str, Any] = {
        "status": status,
        "config_path": str(config_path),
    }
    if backup:
        result["backup"] = backup
    click.echo(json.dumps(result))


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set a config value by dotted key path (e.g. api.taostats_api_key)."""
    config_path = ctx.obj.get("config_path")
    config: AwakenFetchConfig = ctx.obj["config"]

    try:
        typed_value = _set_config_value(config, key, value)
    except AwakenFetchError as e:
        _output_error(e)
        return

    save_config(config, config_path)

    field_name = key.split(".", 1)[1]
    display_value = mask_api_key(str(typed_value)) if _is_secret(field_name) else typed_value
    click.echo(json.dumps({"status": "updated", "key": key, "value": display_value}))


def _set_config_value(config: AwakenFetchConfig, key: str, value: str) -> Any:
    parts = key.split(".", 1)
    if len(parts) != 2:
        raise AwakenFetchError(f"Key must be in form section.key, got: {key!r}")

    section_name, field_name = parts
    section = getattr(config, section_name, None)
    if section is None:
        raise ConfigInvalidError(f"Unknown config section: {section_name!r}")
    if not hasattr(section, field_name):
        raise ConfigInvalidError(f"Unknown config key: {key!r}")

    # Type-coerce
    current = getattr(section, field_name)
    try:
        if isinstance(current, bool):
            typed_value: Any = value.lower() in ("1", "true", "yes")
        elif isinstance(current, int):
            typed_value = int(value)
        elif isinstance(current, float):
            typed_value = float(value)
        else:
            typed_value = value
    except (ValueError, TypeError) as e:
        raise ConfigInvalidError(f"Invalid value for {key}: {e}") from e

    if key == "output.default_format" and typed_value not in ("csv", "json", "jsonl", "table"):
        raise ConfigInvalidError("output.default_format must be csv, json, jsonl or table")

    setattr(section, field_name, typed_value)
    return typed_value


def _is_secret(field_name: str) -> bool:
    return any(marker in field_name.lower() for marker in _SECRET_FIELDS)


@config_group.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration (API keys masked)."""
    config: AwakenFetchConfig = ctx.obj["config"]
    provided = ctx.obj.get("config_path")
    config_path = Path(provided).expanduser() if provided else get_default_config_path()

    result = {
        "config_path": str(config_path),
        "api": {
            "taostats_api_key": mask_api_key(config.api.taostats_api_key),
            "subscan_api_key": mask_api_key(config.api.subscan_api_key),
            "variational_api_key": mask_api_key(config.api.variational_api_key),
            "variational_api_secret": mask_api_key(config.api.variational_api_secret),
            "extended_api_key": mask_api_key(config.api.extended_api_key),
            "skymavis_api_key": mask_api_key(config.api.skymavis_api_key),
        },
        "http": {
            "timeout": config.http.timeout,
            "max_retries": config.http.max_retries,
            "base_delay": config.http.base_delay,
        },
        "output": {
            "default_format": config.output.default_format,
            "output_dir": config.output.output_dir,
        },
    }

    click.echo(format_json(result))


if __name__ == "__main__":
    cli()
