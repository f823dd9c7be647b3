"""Value types describing what the remote role system holds.

- Roles: live, immutable snapshots of remote roles (and their colors)
- Members: snapshots of remote subjects and the roles they hold
- Scopes: the logical containers that partition roles and subjects
"""
