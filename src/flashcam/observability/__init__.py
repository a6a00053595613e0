"""
Observability Module
====================

Session metrics for the frame pipeline.

DESIGN RULES:
    - Does NOT influence scheduling or effects
    - Read by the HTTP /metrics endpoint
"""

from flashcam.observability.metrics import PipelineMetrics


__all__ = [
    "PipelineMetrics",
]
