"""Invoiceflow workflow services."""
