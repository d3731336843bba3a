"""
HTTP API for triggering and inspecting reconciliation runs.
"""
