"""Booking engine: pricing, availability, appointment lifecycle and payment reconciliation."""
