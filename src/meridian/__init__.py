"""
Meridian - cluster-wide task scheduler and message channel.

Cooperating processes register one-off or recurring jobs; one process holds
the authoritative task table, fires due jobs toward the process that owns
them, persists the table across restarts and hands it over when the
cluster topology changes.
"""

__version__ = "0.1.0"
