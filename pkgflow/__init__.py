"""pkgflow - package operation engine.

Resolves, previews, gates and executes install, uninstall and update
operations across the projects of a workspace.
"""

__version__ = "0.1.0"
