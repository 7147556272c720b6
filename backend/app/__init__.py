"""Storefront Payments Backend Application.

Payment orchestration for an e-commerce storefront: one uniform interface
over the Idram, Ameriabank, Inecobank and ArCa payment protocols.

Modules:
    - core: Configuration, database, logging, metrics, credential encryption
    - modules.auth: JWT bearer authentication
    - modules.order: Order lookups and payment status write-back
    - modules.payments: Gateway adapters, payment orchestration, webhooks
"""

__version__ = "0.1.0"
