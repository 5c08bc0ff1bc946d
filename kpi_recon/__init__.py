"""
KPI approval workflow and BOQ reconciliation core.
"""

__version__ = "0.3.0"
