"""Reconciliation core for a cloud provider layer.

Computes field-level change sets between declared configurations, drives
resources through create/update/delete with polled remote operations, and
resolves cross-resource references within one reconciliation pass.
"""

__version__ = "0.1.0"
