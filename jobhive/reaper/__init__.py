"""
Reaper module.
Contains the maintenance loop for delayed jobs, dead workers and zombie jobs.
"""

from jobhive.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
