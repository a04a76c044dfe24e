"""Membership Billing Backend Application.

Issues recurring membership invoices, submits payments to the payment gateway
and reconciles the gateway's asynchronous notifications with invoice and
account state.

Modules:
    - core: Configuration, logging, metrics, document store, Celery setup
    - modules.payment_gateway: Gateway client contract and implementations
    - modules.membership: Invoice lifecycle, charge submission, reconciliation
"""

__version__ = "0.1.0"
