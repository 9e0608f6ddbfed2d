"""
Cobbler - Generation orchestrator for unattended autonomous coding.

Turns a specification backlog into a dependency-ordered task queue, executes
tasks in isolated git worktrees, and folds the results into one auditable
generation branch lifecycle.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
