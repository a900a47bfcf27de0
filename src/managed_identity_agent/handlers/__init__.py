"""
Handlers package - Contains the Kopf handlers of the agent.

- managed_identity.py: per-resource token daemon, spec-change wakeups and
  cleanup after deletion
"""
