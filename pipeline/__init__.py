"""
pipeline — Pipeline controller and deferred-task scheduling.

The controller owns the lifecycle state (idle → processing → complete) and
the live image handle, and publishes snapshots to rendering surfaces.
"""
