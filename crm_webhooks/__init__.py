"""Webhook event-dispatch engine for the CRM.

Notifies user-configured HTTPS endpoints whenever a contact, company, deal,
task or activity changes.
"""

__version__ = "0.1.0"
