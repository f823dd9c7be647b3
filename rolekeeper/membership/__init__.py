"""Membership policies — who should currently hold a managed role."""
