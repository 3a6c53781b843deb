"""
EchoPay command line.

    echopay send 12500 --sender-id 42        # play a signed packet
    echopay encode 12500 --sender-id 42 -o pay.wav
    echopay receive --timeout 30             # wait for one packet
    echopay decode pay.wav --no-freshness
    echopay devices
"""

import logging
import sys
import time

import click

from . import BIT_DURATION, FRESHNESS_WINDOW, GAP_DURATION, SHARED_SECRET
from .audio import AudioContext, list_devices
from .decoder import POLICIES, decode_file
from .encoder import ToneEncoder
from .errors import DeviceError, EchoPayError
from .packet import PacketFields
from .signer import Authenticator
from .transaction import TransactionReceiver, TransactionSender


def format_fields(fields: PacketFields) -> str:
    return (
        f"sender={fields.sender_id} amount={fields.amount_paise} paise "
        f"timestamp={fields.timestamp_sec} nonce={fields.nonce}"
    )


secret_option = click.option(
    "--secret",
    envvar="ECHOPAY_SECRET",
    default=SHARED_SECRET,
    show_default=True,
    help="Shared signing secret (env: ECHOPAY_SECRET)",
)


@click.group()
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Verbose output with detailed logging",
)
@click.version_option(package_name="echopay")
def main(verbose: bool):
    """Send and receive signed payment records over sound."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')


@main.command()
@click.argument("amount", type=click.IntRange(min=1))
@click.option("--sender-id", type=int, required=True, help="Sender account id")
@secret_option
@click.option(
    "-d", "--device",
    type=int,
    help="Audio output device number (default: system default)",
)
@click.option(
    "-s", "--sample-rate",
    type=int,
    default=None,
    help="Sample rate in Hz (default: auto-detect from device)",
)
def send(amount: int, sender_id: int, secret: str, device: int | None, sample_rate: int | None):
    """
    Play a signed packet for AMOUNT paise.
    """
    try:
        with AudioContext(sample_rate=sample_rate, device=device) as context:
            sender = TransactionSender(Authenticator(secret))
            click.echo("Sending...")
            packet = sender.send(sender_id, amount, context)
    except (EchoPayError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"✓ Sent {format_fields(packet.fields)}")


@main.command()
@click.argument("amount", type=click.IntRange(min=1))
@click.option("--sender-id", type=int, required=True, help="Sender account id")
@secret_option
@click.option(
    "-o", "--output",
    type=click.Path(dir_okay=False),
    default="echopay.wav",
    show_default=True,
    help="Output WAV file path",
)
@click.option(
    "-s", "--sample-rate",
    type=int,
    default=48000,
    show_default=True,
    help="Sample rate in Hz",
)
def encode(amount: int, sender_id: int, secret: str, output: str, sample_rate: int):
    """
    Write a signed packet for AMOUNT paise to a WAV file.
    """
    sender = TransactionSender(Authenticator(secret), ToneEncoder(sample_rate=sample_rate))
    try:
        packet = sender.write(output, sender_id, amount)
    except (EchoPayError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"✓ Generated {output}")
    click.echo(f"  {format_fields(packet.fields)}")


@main.command()
@secret_option
@click.option(
    "-t", "--timeout",
    type=float,
    default=None,
    help="Give up after this many seconds (default: wait forever)",
)
@click.option(
    "-d", "--device",
    type=int,
    help="Audio input device number (default: system default)",
)
@click.option(
    "-s", "--sample-rate",
    type=int,
    default=None,
    help="Sample rate in Hz (default: auto-detect from device)",
)
@click.option(
    "--policy",
    type=click.Choice(POLICIES),
    default="peak",
    show_default=True,
    help="Symbol classification policy",
)
@click.option(
    "--interval",
    type=float,
    default=BIT_DURATION,
    show_default=True,
    help="Sampling interval in seconds",
)
def receive(secret: str, timeout: float | None, device: int | None, sample_rate: int | None, policy: str, interval: float):
    """
    Listen for one packet and print it.
    """
    click.echo("Listening... Press Ctrl+C to stop.")
    with AudioContext(sample_rate=sample_rate, input_device=device) as context:
        receiver = TransactionReceiver(
            context,
            Authenticator(secret),
            policy=policy,
            sample_interval=interval,
        )
        try:
            fields = receiver.receive(timeout)
        except KeyboardInterrupt:
            click.echo("\nStopped.")
            return
        except TimeoutError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
        except DeviceError as e:
            click.echo(f"Microphone unavailable: {e}", err=True)
            sys.exit(1)
        except EchoPayError as e:
            click.echo(f"Rejected: {e}", err=True)
            sys.exit(1)
        finally:
            receiver.stop()

    click.echo(f"✓ Received {format_fields(fields)}")


@main.command()
@click.argument("input", type=click.Path(exists=True, dir_okay=False))
@secret_option
@click.option(
    "--no-freshness",
    is_flag=True,
    help="Skip the timestamp age check (for old recordings)",
)
@click.option(
    "--policy",
    type=click.Choice(POLICIES),
    default="peak",
    show_default=True,
    help="Symbol classification policy",
)
@click.option("--bit-duration", type=float, default=BIT_DURATION, show_default=True)
@click.option("--gap-duration", type=float, default=GAP_DURATION, show_default=True)
def decode(input: str, secret: str, no_freshness: bool, policy: str, bit_duration: float, gap_duration: float):
    """
    Decode packets from an audio file.
    """
    click.echo(f"Decoding from file: {input}")
    click.echo("-" * 40)

    candidates = decode_file(
        input,
        policy=policy,
        bit_duration=bit_duration,
        gap_duration=gap_duration,
    )
    if not candidates:
        click.echo("No EchoPay packets detected.", err=True)
        sys.exit(1)

    authenticator = Authenticator(secret, window=float("inf") if no_freshness else FRESHNESS_WINDOW)

    accepted = 0
    for candidate in candidates:
        try:
            fields = authenticator.validate(candidate, int(time.time()))
        except EchoPayError as e:
            click.echo(f"  rejected {candidate.hex()}: {e}")
            continue
        accepted += 1
        click.echo(f"  {format_fields(fields)}")

    if not accepted:
        sys.exit(1)


@main.command()
def devices():
    """List available audio devices."""
    try:
        device_list = list_devices()
    except DeviceError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo("Audio Devices:")
    click.echo("-" * 60)
    for index, name, inputs, outputs in device_list:
        click.echo(f"  [{index}] {name} (in: {inputs}, out: {outputs})")


if __name__ == "__main__":
    main()
