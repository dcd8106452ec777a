"""
API server package — HTTP interface for payment building, paid analysis, and referrals.

Delegates to the payments, settlement, and database layers; holds no payment
logic of its own.
"""
