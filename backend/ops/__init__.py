# ops/__init__.py
"""
Ops app - logging, health probes and Prometheus metrics.
"""
