"""
Teensy Flasher CLI

Command-line interface for inspecting, uploading and monitoring Teensy firmware.
"""

import sys
import json
import logging
import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn

from teensy_flasher.core.parsing import parse_baudrate, resolve_device
from teensy_flasher.core.results import FlashReport
from teensy_flasher.core.actions import load_firmware, flash_file
from teensy_flasher.models import get_device, list_devices
from teensy_flasher.protocol.serial_monitor import (
    SerialConfig,
    SerialMonitorError,
    SerialPortManager,
)

logger = logging.getLogger("teensy_flasher")

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(help="Teensy Flasher - HalfKay firmware upload and serial monitor")


@app.callback()
def _configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, console=err_console)],
    )


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    """Print success message."""
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    """Print warning message."""
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    """Print error message."""
    console.print(f"❌ {text}", style="red")


def _resolve_device_option(device: str):
    try:
        vendor_id, product_id, config = resolve_device(device)
    except ValueError as e:
        raise typer.BadParameter(
            f"{e} Known devices: {', '.join(list_devices())}", param_hint="--device"
        )
    if config is None:
        print_warning(
            f"{vendor_id:04X}:{product_id:04X} is not a known board; "
            f"assuming small address space"
        )
    return vendor_id, product_id, config


def _print_result_messages(result: FlashReport) -> None:
    for warn in result.warnings:
        print_warning(warn)
    for err in result.errors:
        print_error(err)


def _make_transport(vendor_id: int, product_id: int):
    from teensy_flasher.protocol.hid_transport import HalfKayTransport

    return HalfKayTransport(vendor_id, product_id)


@app.command()
def devices() -> None:
    """List known boards and connected HalfKay devices."""
    print_header("Known Boards")

    table = Table(title="Device Registry")
    table.add_column("Name", style="cyan")
    table.add_column("USB Id", style="magenta")
    table.add_column("Family", style="green")
    table.add_column("Flash Base", style="yellow")
    table.add_column("Tested", style="red")
    table.add_column("Notes", style="dim")
    for name in list_devices():
        cfg = get_device(name)
        table.add_row(
            cfg.name,
            cfg.usb_id,
            cfg.family.value,
            f"0x{cfg.flash_base:08X}",
            "Yes" if cfg.tested else "No",
            "; ".join(cfg.notes),
        )
    console.print(table)

    try:
        from teensy_flasher.protocol.hid_transport import enumerate_devices
    except ImportError:
        print_error("hidapi not installed: pip install hidapi")
        return

    found = enumerate_devices()
    if not found:
        print_warning("No bootloader devices connected (press the program button)")
        return

    table = Table(title="Connected Bootloaders")
    table.add_column("USB Id", style="magenta")
    table.add_column("Product", style="green")
    table.add_column("Path", style="cyan")
    for info in found:
        path = info.get("path") or b""
        table.add_row(
            f"{info['vendor_id']:04X}:{info['product_id']:04X}",
            info.get("product_string") or "-",
            path.decode(errors="replace") if isinstance(path, bytes) else str(path),
        )
    console.print(table)


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    import serial.tools.list_ports

    ports_list = list(serial.tools.list_ports.comports())
    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("Device", style="magenta")
    table.add_column("Description", style="green")
    for port in ports_list:
        table.add_row(port.device, port.name or "-", port.description or "-")
    console.print(table)


@app.command()
def inspect(
    firmware: Path = typer.Argument(..., help="Firmware file (.hex, .ehex or binary)"),
    device: str = typer.Option("Teensy 4.1", "--device", "-d", help="Board name or VID:PID"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Decode a firmware file and show the blocks that would be uploaded."""
    vendor_id, product_id, config = _resolve_device_option(device)
    block_set, result = load_firmware(firmware, config or (vendor_id, product_id))

    if output_json:
        data = result.to_dict()
        if block_set is not None:
            data["blocks"] = {
                "main": [f"0x{b.address:08X}" for b in block_set.main_blocks],
                "loader": [f"0x{b.address:08X}" for b in block_set.loader_blocks],
            }
        typer.echo(json.dumps(data, indent=2))
        if not result.ok:
            raise typer.Exit(1)
        return

    print_header(f"Firmware: {firmware.name}")
    if block_set is None:
        _print_result_messages(result)
        raise typer.Exit(1)

    for label, blocks in (("Main", block_set.main_blocks), ("Loader", block_set.loader_blocks)):
        if not blocks:
            continue
        table = Table(title=f"{label} Blocks")
        table.add_column("#", style="dim")
        table.add_column("Address", style="cyan")
        table.add_column("Blank", style="yellow")
        for i, block in enumerate(blocks):
            table.add_row(str(i), f"0x{block.address:08X}", "yes" if block.is_blank else "")
        console.print(table)

    console.print(result.to_summary())
    _print_result_messages(result)


@app.command()
def flash(
    firmware: Path = typer.Argument(..., help="Firmware file (.hex, .ehex or binary)"),
    device: str = typer.Option("Teensy 4.1", "--device", "-d", help="Board name or VID:PID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
) -> None:
    """Upload firmware to a board in HalfKay bootloader mode."""
    vendor_id, product_id, config = _resolve_device_option(device)
    label = config.name if config else f"{vendor_id:04X}:{product_id:04X}"
    print_header(f"Flash {firmware.name} -> {label}")

    if not yes:
        typer.confirm("Board must be in bootloader mode. Continue?", abort=True)

    transport = _make_transport(vendor_id, product_id)
    with Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        console=console,
    ) as progress:
        task = progress.add_task("Uploading...", total=1.0)
        result = flash_file(
            firmware,
            config or (vendor_id, product_id),
            transport,
            progress_cb=lambda value: progress.update(task, completed=value),
        )

    _print_result_messages(result)
    if not result.ok:
        raise typer.Exit(1)
    print_success(
        f"Uploaded {result.blocks_sent} blocks "
        f"({result.blocks_skipped} blank skipped); board rebooting"
    )


@app.command()
def monitor(
    port: str = typer.Option(..., "--port", "-p", help="Serial port"),
    baud: str = typer.Option("115200", "--baud", "-b", help="Baud rate"),
    duration: Optional[float] = typer.Option(None, "--duration", help="Stop after N seconds"),
) -> None:
    """Print lines received from the board's serial port until Ctrl-C."""
    try:
        baudrate = parse_baudrate(baud)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--baud")

    manager = SerialPortManager()
    manager.on_line(lambda line: console.print(line, markup=False, highlight=False))
    try:
        manager.open_serial(SerialConfig(port=port, baudrate=baudrate))
    except SerialMonitorError as e:
        print_error(str(e))
        raise typer.Exit(1)

    console.print(f"[dim]Monitoring {port} at {baudrate} baud (Ctrl-C to stop)[/dim]")
    start = time.time()
    try:
        while duration is None or time.time() - start < duration:
            time.sleep(0.1)
    except KeyboardInterrupt:
        pass
    finally:
        manager.close_serial()


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
