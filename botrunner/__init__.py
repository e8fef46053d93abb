"""
Botrunner - deploy submitted code as supervised background bots.

Provides an HTTP API that provisions a workspace per bot, installs its
dependencies, and keeps it running under an auto-restarting process supervisor.
"""

__version__ = "0.1.0"
