# Copyright (c) Syntropy Systems
"""Main CLI entry point for renderbench."""

import typer

from renderbench.cli.init_cmd import init
from renderbench.cli.pins import pins
from renderbench.cli.plan import plan
from renderbench.cli.run import run
from renderbench.cli.validate import validate

app = typer.Typer(
    name="renderbench",
    help=(
        "Paired rendering benchmark harness. Plan trials, measure frame "
        "pacing, validate the records."
    ),
    no_args_is_help=True,
    add_completion=False,
)

# Register commands
_ = app.command()(init)
_ = app.command()(plan)
_ = app.command()(run)
_ = app.command()(validate)
_ = app.command()(pins)


if __name__ == "__main__":
    app()
