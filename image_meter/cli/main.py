"""
CLI interface for image-meter.

Provides command-line access to accounts, quotes and generation.
"""

import hashlib
import logging
import mimetypes
import sys
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from image_meter.app import build_pipeline
from image_meter.billing.gate import Caller
from image_meter.billing.sqlite_gate import SQLiteBillingGate
from image_meter.config.loader import AppConfig, load_config
from image_meter.core.errors import (
    ChargeDeclined,
    ImageMeterError,
    PaymentRequired,
    ProviderFailure,
    ValidationError,
)
from image_meter.core.pipeline import GenerationResult, Quote
from image_meter.core.request import DEFAULT_QUALITY, DEFAULT_SIZE, GenerationRequest
from image_meter.provider.openai_provider import GenerationProvider
from image_meter.storage.db import initialize_schema

app = typer.Typer()
account_app = typer.Typer(help="Manage billing accounts.")
app.add_typer(account_app, name="account")
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_ERROR = 1
EXIT_CODE_PAYMENT = 2
EXIT_CODE_PROVIDER = 3


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _get_config(ctx: typer.Context) -> AppConfig:
    return ctx.obj["config"]


def _require_database(config: AppConfig) -> None:
    if not Path(config.db_path).exists():
        console.print(f"[bold yellow]No database found at {config.db_path}[/]")
        console.print("Run `image-meter init` to initialize the database")
        sys.exit(EXIT_CODE_ERROR)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="IMAGE_METER_CONFIG",
        help="Path to YAML configuration file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
):
    """image-meter CLI."""
    _configure_logging(verbose)
    try:
        ctx.obj = {"config": load_config(config_path)}
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Configuration error:[/] {e}")
        sys.exit(EXIT_CODE_ERROR)

    if ctx.invoked_subcommand is None:
        console.print("image-meter - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the image-meter database."""
    config = _get_config(ctx)
    try:
        initialize_schema(config.db_path)
        console.print(f"[green]✓[/] Database initialized at {config.db_path}")
        sys.exit(EXIT_CODE_OK)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_ERROR)


@app.command()
def status(ctx: typer.Context):
    """Show configuration and database readiness."""
    config = _get_config(ctx)
    table = Table(title="image-meter status")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("Database", config.db_path)
    table.add_row("Database ready", "yes" if Path(config.db_path).exists() else "no (run init)")
    table.add_row("Provider model", config.provider.model)
    table.add_row("Fee multiplier", str(config.pricing.fee_multiplier))
    table.add_row("Payment link", config.billing.payment_link or "-")
    console.print(table)


@account_app.command("create")
def account_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Account holder name"),
    balance: int = typer.Option(0, "--balance", "-b", help="Opening balance in cents")
):
    """Create an account and print its access token."""
    _require_database(_get_config(ctx))
    gate = SQLiteBillingGate(_get_config(ctx).db_path)
    try:
        token = gate.create_account(name, balance)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_ERROR)
    console.print(f"[green]✓[/] Created account for {name}")
    console.print(f"Access token: {token}")
    console.print(f"Balance: {_format_cents(balance)}")


@account_app.command("topup")
def account_topup(
    ctx: typer.Context,
    token: str = typer.Argument(..., help="Access token"),
    amount: int = typer.Argument(..., help="Amount to credit in cents")
):
    """Credit an account."""
    _require_database(_get_config(ctx))
    gate = SQLiteBillingGate(_get_config(ctx).db_path)
    try:
        new_balance = gate.top_up(token, amount)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_ERROR)
    console.print(f"[green]✓[/] New balance: {_format_cents(new_balance)}")


@account_app.command("show")
def account_show(
    ctx: typer.Context,
    token: str = typer.Argument(..., help="Access token"),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of recent charges to list")
):
    """Show balance and recent charges."""
    _require_database(_get_config(ctx))
    gate = SQLiteBillingGate(_get_config(ctx).db_path)
    authorization = gate.authorize(Caller(token))
    if not authorization.registered:
        console.print("[red]Unknown account[/]")
        sys.exit(EXIT_CODE_ERROR)

    console.print(f"\n[bold]Account:[/bold] {gate.get_account_name(token)}")
    console.print(f"Balance: {_format_cents(authorization.balance_cents)}")

    charges = gate.fetch_charges(token, limit=limit)
    if not charges:
        console.print("\n[dim]No charges yet.[/]")
        return

    table = Table(title="Recent charges")
    table.add_column("Time")
    table.add_column("Amount", justify="right")
    for record in charges:
        table.add_row(record.timestamp.strftime("%Y-%m-%d %H:%M:%S"), _format_cents(record.amount_cents))
    console.print(table)


@app.command()
def quote(
    ctx: typer.Context,
    prompt: str = typer.Argument(..., help="Image prompt"),
    size: str = typer.Option(DEFAULT_SIZE, "--size", "-s", help="Image size"),
    quality: str = typer.Option(DEFAULT_QUALITY, "--quality", "-q", help="Quality tier"),
    count: int = typer.Option(1, "--count", "-n", help="Number of images"),
    token: Optional[str] = typer.Option(None, "--token", "-t", envvar="IMAGE_METER_TOKEN", help="Access token")
):
    """
    Estimate the cost of a request.

    This is a read-only operation: nothing is charged or generated.
    """
    config = _get_config(ctx)
    try:
        request = GenerationRequest(prompt=prompt, size=size, quality=quality, count=count)
    except ValidationError as e:
        console.print(f"[red]Invalid request:[/] {e}")
        sys.exit(EXIT_CODE_ERROR)

    if token:
        _require_database(config)
    pipeline = build_pipeline(config, provider=_QuoteOnlyProvider())
    try:
        result = pipeline.quote(request, Caller(token) if token else None)
    finally:
        pipeline.close()
    _display_quote(result)


@app.command()
def generate(
    ctx: typer.Context,
    prompt: str = typer.Argument(..., help="Image prompt"),
    size: str = typer.Option(DEFAULT_SIZE, "--size", "-s", help="Image size"),
    quality: str = typer.Option(DEFAULT_QUALITY, "--quality", "-q", help="Quality tier"),
    count: int = typer.Option(1, "--count", "-n", help="Number of images"),
    token: Optional[str] = typer.Option(None, "--token", "-t", envvar="IMAGE_METER_TOKEN", help="Access token"),
    output: Path = typer.Option(Path("."), "--output", "-o", help="Directory to write images to")
):
    """Generate images, charging the account on a cache miss."""
    config = _get_config(ctx)
    try:
        request = GenerationRequest(prompt=prompt, size=size, quality=quality, count=count)
    except ValidationError as e:
        console.print(f"[red]Invalid request:[/] {e}")
        sys.exit(EXIT_CODE_ERROR)

    _require_database(config)
    try:
        pipeline = build_pipeline(config)
    except Exception as e:
        console.print(f"[red]Error creating provider:[/] {str(e)}")
        sys.exit(EXIT_CODE_ERROR)

    try:
        result = pipeline.handle(request, Caller(token))
    except PaymentRequired as e:
        console.print(f"[red]{e.message}[/]")
        if e.payment_link:
            console.print(f"Add balance at: {e.payment_link}")
        sys.exit(EXIT_CODE_PAYMENT)
    except ChargeDeclined as e:
        console.print(f"[red]{e.message}[/]")
        sys.exit(EXIT_CODE_PAYMENT)
    except ProviderFailure as e:
        console.print(f"[red]{e.message}[/]")
        console.print("[yellow]The charge for this request has not been refunded.[/]")
        sys.exit(EXIT_CODE_PROVIDER)
    except ImageMeterError as e:
        console.print(f"[red]Error:[/] {e.message}")
        sys.exit(EXIT_CODE_ERROR)
    finally:
        # Blocks until detached cache writes finish
        pipeline.close()

    paths = _write_artifacts(result, output)
    _display_generation(result, paths)


class _QuoteOnlyProvider(GenerationProvider):
    """Stand-in provider for read-only commands; needs no API key."""

    def generate(self, request):
        raise RuntimeError("quote never generates")


def _write_artifacts(result: GenerationResult, output: Path) -> List[Path]:
    output.mkdir(parents=True, exist_ok=True)
    stem = hashlib.sha256(result.key.encode("utf-8")).hexdigest()[:12]
    paths = []
    for index, artifact in enumerate(result.artifacts):
        extension = mimetypes.guess_extension(artifact.content_type) or ".bin"
        suffix = f"-{index}" if len(result.artifacts) > 1 else ""
        path = output / f"{stem}{suffix}{extension}"
        path.write_bytes(artifact.data)
        paths.append(path)
    return paths


def _format_cents(cents: int) -> str:
    """Format an amount in cents as dollars."""
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"


def _format_dollars(amount: Decimal) -> str:
    return f"${amount.normalize():f}" if amount else "$0.00"


def _display_quote(result: Quote):
    """Display a cost breakdown in a clean, financial format."""
    cost = result.cost
    console.print("\n[bold]Image Generation Cost Estimate[/bold]")
    console.print("-" * 40)
    console.print(f"Prompt: {escape(result.request.prompt)}")
    console.print(f"Size: {result.request.size}  Quality: {result.request.quality}  Count: {result.request.count}")

    table = Table()
    table.add_column("Item")
    table.add_column("Cost", justify="right")
    table.add_row(f"Text input ({cost.text_input_tokens:,} tokens)", _format_dollars(cost.text_input_cost))
    table.add_row(f"Image input ({cost.image_input_tokens:,} tokens)", _format_dollars(cost.image_input_cost))
    table.add_row("Image output", _format_dollars(cost.image_output_cost))
    table.add_row("Fee multiplier", f"x{cost.fee_multiplier}")
    table.add_row("[bold]Total[/bold]", f"[bold]{_format_cents(cost.total_charge_cents)}[/bold]")
    console.print(table)

    if not cost.output_price_known:
        console.print("[yellow]Warning:[/] no output price for this quality/size; output priced at $0")

    console.print(f"Cache key: {result.key}")
    if result.registered:
        console.print(f"\nCurrent balance: {_format_cents(result.balance_cents)}")
        console.print(f"Can afford: {'Yes' if result.can_afford else 'No'}")
        console.print(f"Balance after generation: {_format_cents(result.balance_after_cents)}")
    elif result.payment_link:
        console.print(f"\n[bold]Payment required:[/bold] {result.payment_link}")


def _display_generation(result: GenerationResult, paths: List[Path]):
    if result.cache_hit:
        console.print("[green]✓[/] Served from cache (no charge)")
    else:
        console.print(f"[green]✓[/] Generated and charged {_format_cents(result.charged_cents)}")
    for path in paths:
        console.print(f"  {path}")


if __name__ == "__main__":
    app()
