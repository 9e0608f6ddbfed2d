"""
Entry point for running cobbler_orchestrator as a module.

Allows running as: python -m cobbler_orchestrator
"""

from cobbler_orchestrator.cli import cli_main

if __name__ == "__main__":
    cli_main()
