import sys

from . import cli
from .config import setup_logging

_COMMANDS = {
    "--status": cli.cli_status,
    "-s": cli.cli_status,
    "--sign-in": cli.cli_sign_in,
    "--import-browser": cli.cli_import,
    "--sign-out": cli.cli_sign_out,
}


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    setup_logging()
    if argv:
        command = _COMMANDS.get(argv[0])
        if command is None:
            print(f"usage: claude-usage-bar [{' | '.join(_COMMANDS)}]", file=sys.stderr)
            return 2
        return command()

    from .app import UsageBarApp
    UsageBarApp().run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
