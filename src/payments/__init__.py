"""
Deposit payments: card (Stripe) and wallet (Khalti) gateways and the
reconciliation of their outcomes with bookings.
"""
