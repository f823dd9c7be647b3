"""Desired-state templates for managed roles.

A template names the attributes of a role that are enforced and the values
they must hold. Templates are persisted as flat key/value records.
"""
