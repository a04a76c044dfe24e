"""Application modules.

This package contains the feature modules of the membership billing service:
- payment_gateway: Payment gateway client contract and implementations
- membership: Invoices, payment submission and webhook reconciliation
"""
