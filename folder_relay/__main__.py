"""Entry point for Folder Relay.

Usage:
    python -m folder_relay            Run in the console until Ctrl-C
    python -m folder_relay service    Install/manage the background service
                                      (Windows service, macOS launchd, or Linux daemon)
"""

import sys


def main() -> None:
    """Run in the console or delegate to the service CLI."""
    if len(sys.argv) > 1 and sys.argv[1] in ("--service", "service"):
        from folder_relay.service import main as service_main

        service_main(sys.argv[2:])
    else:
        from folder_relay.service import run_foreground

        run_foreground()


if __name__ == "__main__":
    main()
