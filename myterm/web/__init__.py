"""
Control API package for MyTerm.

This package contains the local HTTP / WebSocket control API that lets a second
terminal (or any local tool) drive the processes supervised by a running console,
plus the Hypercorn service thread that serves it.
"""
