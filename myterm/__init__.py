"""
MyTerm: a local process supervisor.

Declare the long-running commands of a project in its `myterm.yml` and drive
them from one console: start, stop, restart, send input, follow output.
"""

__version__ = "0.4.0"
