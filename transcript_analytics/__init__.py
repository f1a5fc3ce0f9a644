"""
Transcript Analytics Platform

Tracks monthly transcript volumes per client, forecasts future volumes,
keeps server and client copies of the dataset consistent, and exports
analytics reports on demand or on a schedule.
"""

__version__ = "1.0.0"
__author__ = "Transcript Analytics Team"
