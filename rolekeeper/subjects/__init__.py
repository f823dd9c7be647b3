"""Subjects — cached identities that hold roles, and the directory that resolves them."""
