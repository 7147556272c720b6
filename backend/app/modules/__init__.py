"""Application modules.

- auth: JWT bearer authentication and role checks
- order: Order aggregate consumed by payments
- payments: Gateway configs, adapters, payment lifecycle, webhooks
"""
