"""CLI for Parlance.

CLI Commands:
    parlance estimate <text>         Estimate the token cost of a text
    parlance budget                  Show the token budget for a system prompt
    parlance inspect <history>       Assemble a turn against a history file
"""

from parlance.interfaces.cli.app import cli, main

__all__ = ["cli", "main"]
