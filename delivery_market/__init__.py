"""
Delivery Market - sellers post deliveries, independent drivers claim and
complete them, and drivers are paid into a wallet ledger.
"""
__version__ = "1.0.0"
