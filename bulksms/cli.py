"""
Operator console for bulksms.

Connects the gateway, shows events as they arrive and accepts send, status
and raw AT commands.
"""

import sys
import logging
from typing import Optional

from .config import load_config
from .events import EventDispatcher, EventKind, GatewayEvent
from .gateway import SMSGateway
from .types import GatewayConfig, QueuedMessage
from .version import __version__
from .exceptions import SMSGatewayError


class GatewayCLI:
    """Interactive gateway console."""

    def __init__(self, config: GatewayConfig, rate_limit_delay: float = 1.0):
        """
        Initialize CLI.

        Args:
            config: Gateway configuration
            rate_limit_delay: Seconds between consecutive sends
        """
        self.config = config
        self.gateway = SMSGateway(config, rate_limit_delay=rate_limit_delay)
        self.event_count = 0
        self._next_id = 1
        self._dispatcher: Optional[EventDispatcher] = None

    def _display_event(self, event: GatewayEvent):
        self.event_count += 1
        data = event.data
        if event.kind == EventKind.MESSAGE_PROCESSED:
            text = f"#{data.correlation_id} {data.phone}: {data.outcome.value}"
            if data.error:
                text += f" ({data.error})"
        elif data is None:
            text = ""
        else:
            text = str(data)
        print(f"\n[{event.kind.value}] {text}")
        print("> ", end="", flush=True)

    def run(self):
        """Run the console."""
        print(f"bulksms CLI v{__version__}")
        print(f"Connecting to {self.config.port} at {self.config.baudrate} baud...")
        print("Type 'help' for commands, 'quit' to exit\n")

        self._dispatcher = EventDispatcher(
            self.gateway.events,
            {kind: self._display_event for kind in EventKind}
        )
        self._dispatcher.start()

        try:
            if not self.gateway.connect():
                print("\nCould not connect to the modem (see log for details)")
                return 1

            print("Connected! Ready.\n")

            while True:
                try:
                    cmd = input("> ").strip()

                    if not cmd:
                        continue

                    lowered = cmd.lower()
                    if lowered in ("quit", "exit", "q"):
                        break
                    elif lowered == "help":
                        self._print_help()
                    elif lowered == "status":
                        self._show_status()
                    elif lowered.startswith("send "):
                        self._queue_send(cmd[5:])
                    elif lowered.startswith("at"):
                        self._send_command(cmd)
                    else:
                        print(f"Unknown command: {cmd}")

                except KeyboardInterrupt:
                    print("\nUse 'quit' to exit")
                    continue
                except EOFError:
                    break

        except SMSGatewayError as e:
            print(f"\nError: {e}")
            return 1
        except Exception as e:
            print(f"\nUnexpected error: {e}")
            logging.exception("CLI error")
            return 1
        finally:
            print("\nClosing connection...")
            self.gateway.disconnect()
            self._dispatcher.stop()
            print("Goodbye!")

        return 0

    def _queue_send(self, args: str):
        """Queue 'send <phone> <text>'."""
        phone, _, text = args.strip().partition(" ")
        if not phone or not text:
            print("Usage: send <phone> <text>")
            return
        try:
            message = QueuedMessage(phone=phone, body=text, correlation_id=str(self._next_id))
        except ValueError as e:
            print(f"Error: {e}")
            return
        self._next_id += 1
        self.gateway.queue_message(message)
        print(f"Queued #{message.correlation_id} ({len(self.gateway.queue)} waiting)")

    def _send_command(self, cmd: str):
        """Send a raw AT command and display the response."""
        modem = self.gateway.modem
        if modem is None:
            print("Not connected")
            return
        try:
            for line in modem.send_raw_at(cmd):
                print(line)
        except SMSGatewayError as e:
            print(f"Error: {e}")

    def _show_status(self):
        status = self.gateway.get_status()
        print(f"\nConnected: {status.connected}")
        print(f"Signal: {status.signal_strength}/31")
        print(f"Provider: {status.sim_provider}")
        print(f"Queue: {status.queue_length}")

    def _print_help(self):
        """Print help message."""
        print("""
Available commands:
  send <phone> <text>  - Queue an SMS (e.g., send +15551234567 Hello)
  status               - Show connection, signal, provider and queue depth
  <AT command>         - Send a raw AT command (e.g., AT+CSQ)
  help                 - Show this help message
  quit/exit/q          - Exit CLI
        """)


def main():
    """Main entry point for CLI."""
    import argparse

    parser = argparse.ArgumentParser(
        description="bulksms CLI - SMS gateway console",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  SMS_GATEWAY_PORT  serial port (default /dev/ttyUSB0)
  SMS_GATEWAY_BAUD  baud rate (default 115200)
  SIM_PIN           SIM unlock code

Examples:
  bulksms-cli /dev/ttyUSB2
  bulksms-cli /dev/ttyUSB2 --baudrate 9600 --pin 1234
        """
    )

    parser.add_argument(
        "port",
        nargs="?",
        help="Serial port (e.g., /dev/ttyUSB2, COM3)"
    )
    parser.add_argument(
        "-b", "--baudrate",
        type=int,
        help="Baud rate (default: 115200)"
    )
    parser.add_argument(
        "--pin",
        help="SIM PIN"
    )
    parser.add_argument(
        "--rate-limit",
        type=float,
        default=1.0,
        help="Seconds between messages (default: 1.0)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
    else:
        logging.basicConfig(
            level=logging.WARNING,
            format='%(levelname)s: %(message)s'
        )

    try:
        config = load_config(port=args.port, baudrate=args.baudrate, sim_pin=args.pin)
    except SMSGatewayError as e:
        print(f"Configuration error: {e}")
        return 2

    cli = GatewayCLI(config, rate_limit_delay=args.rate_limit)
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
