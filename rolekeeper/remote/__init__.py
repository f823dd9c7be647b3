"""The boundary to the remote role system.

- Interfaces: the role and member stores the engine reads from and writes to
- Events: the inbound feed that triggers reconciliation passes
"""
