"""
Policy Service package for the Access Layer.

This package decides whether a subject may perform an action on a
resource under a given request context. It provides:

- app.rules: Rule model, pattern matching, condition and constraint
  evaluation, and the priority/deny-override decision engine.
- app.cache: In-process caching for decision results.
- app.main: Engine bootstrap wiring logging and metrics from settings.

Guidelines:
- The engine performs no I/O; rule storage and enforcement live with
  the caller.
- Optimize for low-latency evaluations; cache where possible.
- Keep rule evaluation deterministic and observable (metrics + logs).
"""
