# src/growthtools/cli/main.py
import argparse

from growthtools.cli.fit_cli import add_fit_subcommand


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="growthtools",
        description="growthtools: exponential growth rates from lagged / saturating ln(abundance) series",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    add_fit_subcommand(sub)

    args = parser.parse_args(argv)
    return args._fn(args)  # each subcommand sets a handler


if __name__ == "__main__":
    raise SystemExit(main())
