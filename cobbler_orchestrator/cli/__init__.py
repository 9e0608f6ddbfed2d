"""CLI package for cobbler.

Modules:
    app.py        - Main Typer app, version callback, init, sub-app registration
    generator.py  - Generation lifecycle commands (start, run, resume, stop, switch, list, reset)
    cobbler.py    - Single-phase commands (measure, stitch, prompt, history)
    display.py    - Rich formatting utilities (format_phase, format_cost, tables)
    common.py     - Shared helpers (get_console, load_config_or_exit, build_manager)

Command Structure:
    cobbler generator start
    cobbler generator run --cycles 3
    cobbler cobbler measure

Usage:
    from cobbler_orchestrator.cli import app, cli_main  # Main exports
"""
from cobbler_orchestrator.cli.app import app, cli_main

__all__ = ["app", "cli_main"]
