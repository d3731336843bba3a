"""
Curtailment-to-mining reconciliation engine.

Derives Bitcoin mining potential from wind-farm curtailment events and keeps
the derived records and their summaries complete and consistent.
"""

__version__ = "0.1.0"
