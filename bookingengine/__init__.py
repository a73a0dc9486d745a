"""
Scheduling and availability engine for appointment-based businesses.
"""

__version__ = "0.1.0"
