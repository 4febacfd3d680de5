"""Task scheduling and agent dispatch.

The engine matches ready tasks to available agents under per-agent and
per-repository concurrency ceilings:

- ``selector`` ranks candidates and applies capacity as an eligibility filter.
- ``pusher`` runs the lock-serialized push cycle with compare-and-swap claims.
- ``lifecycle`` applies session start/stop/rate-limit/error events.
- ``reconcile`` resets tasks whose sessions are finished or lost.
- ``service`` wires everything to three periodic drivers.
"""
