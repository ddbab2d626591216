"""
Domain layer: delivery lifecycle, fee policy, wallet ledger
"""
