"""
Reciplier — Entry point.

Solve a template file from the command line::

    python main.py recipe.txt --freeze servings=4 -vv
"""

import argparse
import sys

from reciplier.checks import format_num
from reciplier.engine import process_template
from reciplier.logging_config import setup_logging


def _parse_freeze(items: list) -> dict:
    frozen = {}
    for item in items or []:
        name, sep, value = item.partition('=')
        if not sep or not name.strip():
            raise ValueError(f"Expected name=value, got {item!r}")
        try:
            frozen[name.strip()] = float(value)
        except ValueError:
            raise ValueError(f"Frozen value for {name.strip()} is not a number: {value!r}")
    return frozen


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reciplier",
        description="Solve the cells of a Reciplier template.",
    )
    parser.add_argument("template", help="path to the template file")
    parser.add_argument("--freeze", action="append", metavar="NAME=VALUE",
                        help="pin a variable to a value (repeatable)")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="log each solve (-v) and the solver trace (-vv) to stderr")
    parser.add_argument("--log-file", metavar="PATH",
                        help="write the full solver trace to PATH")
    return parser


def main(argv: list = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    try:
        frozen = _parse_freeze(args.freeze)
        with open(args.template, encoding="utf-8") as f:
            text = f.read()
        result = process_template(text, frozen=frozen)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    violated = set(result["violated_cells"])
    for cell in result["cells"]:
        mark = "  !" if cell["id"] in violated else ""
        value = format_num(result["cell_values"][cell["id"]])
        print(f"{{{cell['urtext']}}} = {value}{mark}")
    for err in result["errors"]:
        print(f"Error: {err}", file=sys.stderr)

    summary = result["summary"]
    print(f"\nStatus: {summary['validation_status']} "
          f"({summary['total_cells']} cells, {summary['total_equations']} equations, "
          f"{summary['runtime_ms']} ms)")
    return 0 if result["satisfied"] else 1


if __name__ == "__main__":
    sys.exit(main())
