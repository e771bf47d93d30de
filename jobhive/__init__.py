"""
Distributed Job Queue

A Redis-backed job queue with delayed jobs, process-isolated workers,
host-level liveness tracking and a remote control socket.
"""

__version__ = "1.0.0"
