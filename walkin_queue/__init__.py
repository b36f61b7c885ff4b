"""Walk-in service queue coordinator.

Customers join a branch queue remotely, are admitted into a building with a
bounded occupancy as space frees up, must confirm entry within a grace period
or lose their place, and are eventually served.

The `Coordinator` owns each branch's tickets and serializes every change to
them; `service` exposes it over MQTT. See README for how to run.
"""
