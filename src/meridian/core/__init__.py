"""Meridian core: scheduling, message channel, RPC, configuration."""
