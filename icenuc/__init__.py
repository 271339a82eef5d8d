"""
icenuc: ingestion of freezing-point instrument workbooks into a relational store.
"""

__version__ = "0.3.0"
