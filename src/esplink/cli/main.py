"""esplink CLI - drive and observe an ESP32 motor controller session."""

from __future__ import annotations

import asyncio
import json

import click

from esplink.cli.render import format_notification, format_state
from esplink.config import SessionConfig
from esplink.core.engine import DeviceEngine
from esplink.core.gate import GATED_ACTIONS, Action
from esplink.core.notifier import Notification
from esplink.core.session import ConnectionState
from esplink.exceptions import ConfirmationRequired, InvalidCommandError
from esplink.state.models import UIState
from esplink.utils.logging import setup_logging


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--json-output", is_flag=True, help="Output in JSON format")
@click.pass_context
def cli(ctx: click.Context, debug: bool, json_output: bool) -> None:
    """esplink - ESP32 motor controller session client."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["json_output"] = json_output
    setup_logging(level="DEBUG" if debug else "WARNING", json_output=json_output)


def _make_config(host: str, port: int | None, secure: bool, motors: int | None) -> SessionConfig:
    overrides: dict[str, object] = {"host": host, "secure": secure}
    if port is not None:
        overrides["port"] = port
    if motors is not None:
        overrides["motor_count"] = motors
    try:
        return SessionConfig(**overrides)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc


def _state_printer(json_output: bool):
    def _print(state: UIState) -> None:
        if json_output:
            click.echo(json.dumps(state.model_dump(mode="json")))
        else:
            click.echo("\n".join(format_state(state)))
    return _print


def _notification_printer(note: Notification | None) -> None:
    if note is not None:
        click.echo(format_notification(note), err=True)


@cli.command()
def actions() -> None:
    """List the actions the engine can perform."""
    for action in Action:
        gated = " (requires confirmation)" if action in GATED_ACTIONS else ""
        click.echo(f"  {action.value}{gated}")


@cli.command()
@click.argument("host")
@click.option("--port", type=int, default=None, help="WebSocket port (default: scheme default)")
@click.option("--secure", is_flag=True, help="Use wss:// instead of ws://")
@click.option("--motors", type=int, default=None, help="Number of motors on the device")
@click.option("--duration", type=float, default=0.0, help="Seconds to run (0 = until Ctrl-C)")
@click.pass_context
def monitor(
    ctx: click.Context,
    host: str,
    port: int | None,
    secure: bool,
    motors: int | None,
    duration: float,
) -> None:
    """Stream device state as it arrives."""
    config = _make_config(host, port, secure, motors)
    try:
        asyncio.run(_monitor(config, duration, ctx.obj.get("json_output", False)))
    except KeyboardInterrupt:
        pass


async def _monitor(config: SessionConfig, duration: float, json_output: bool) -> None:
    engine = DeviceEngine(config, loop=asyncio.get_running_loop())
    engine.subscribe(_state_printer(json_output))
    engine.notifier.subscribe(_notification_printer)
    engine.start()
    try:
        if duration > 0:
            await asyncio.sleep(duration)
        else:
            await asyncio.Event().wait()
    finally:
        engine.stop()


@cli.command()
@click.argument("host")
@click.argument("action", type=click.Choice([a.value for a in Action]))
@click.option("--motor", type=int, default=None, help="Motor index")
@click.option("--target", type=int, default=None, help="Target position")
@click.option("--state", "servo_state", type=click.Choice(["on", "off"]), default=None,
              help="Servo state for set_servo")
@click.option("--url", default=None, help="Image URL for update actions")
@click.option("--port", type=int, default=None)
@click.option("--secure", is_flag=True, help="Use wss:// instead of ws://")
@click.option("--motors", type=int, default=None, help="Number of motors on the device")
@click.option("--yes", "assume_yes", is_flag=True, help="Skip the confirmation prompt")
@click.option("--timeout", type=float, default=10.0, help="Seconds to wait for the connection")
@click.option("--linger", type=float, default=1.0, help="Seconds to wait for a state reply")
@click.pass_context
def send(
    ctx: click.Context,
    host: str,
    action: str,
    motor: int | None,
    target: int | None,
    servo_state: str | None,
    url: str | None,
    port: int | None,
    secure: bool,
    motors: int | None,
    assume_yes: bool,
    timeout: float,
    linger: float,
) -> None:
    """Connect, perform one ACTION, and print the resulting state."""
    config = _make_config(host, port, secure, motors)
    params: dict[str, object] = {"motor": motor, "target": target, "url": url}
    if servo_state is not None:
        params["state"] = servo_state == "on"
    asyncio.run(_send(
        config,
        Action(action),
        params,
        assume_yes=assume_yes,
        timeout=timeout,
        linger=linger,
        json_output=ctx.obj.get("json_output", False),
    ))


async def _send(
    config: SessionConfig,
    action: Action,
    params: dict[str, object],
    *,
    assume_yes: bool,
    timeout: float,
    linger: float,
    json_output: bool,
) -> None:
    engine = DeviceEngine(config, loop=asyncio.get_running_loop())
    engine.notifier.subscribe(_notification_printer)
    opened = asyncio.Event()

    def _on_state(state: ConnectionState) -> None:
        if state == ConnectionState.OPEN:
            opened.set()

    engine.session.subscribe(_on_state)
    engine.start()
    try:
        try:
            await asyncio.wait_for(opened.wait(), timeout)
        except asyncio.TimeoutError:
            raise click.ClickException(f"Could not connect to {config.url}") from None

        # Wait for the refresh reply so update URLs and state are current.
        await asyncio.sleep(min(linger, 0.5))
        try:
            engine.execute(action, **params)
        except ConfirmationRequired as exc:
            pending = exc.pending
            if assume_yes or click.confirm(f"{pending.title}: {pending.message}", default=False):
                engine.confirm()
            else:
                engine.cancel()
                click.echo("Cancelled.")
                return
        except InvalidCommandError as exc:
            raise click.ClickException(str(exc)) from exc

        await asyncio.sleep(linger)
        _state_printer(json_output)(engine.state)
    finally:
        engine.stop()


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
