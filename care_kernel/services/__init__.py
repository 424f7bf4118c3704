"""Kernel services: tenancy and the audit trail."""
