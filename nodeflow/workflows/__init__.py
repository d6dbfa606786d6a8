"""
Workflow definitions

Pre-built workflow graphs for demos and smoke tests.
"""

from .lead_intake import create_lead_intake_workflow, SAMPLE_LEAD

__all__ = [
    "create_lead_intake_workflow",
    "SAMPLE_LEAD"
]
