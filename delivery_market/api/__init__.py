"""
HTTP surface: request handlers that invoke the delivery and wallet core.
"""
