"""
ordertrack - order lifecycle and real-time tracking core for the delivery client.
"""

__version__ = "0.1.0"
