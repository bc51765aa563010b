"""
Role-based access control feature module.

Immutable Role and Assignment values, permission evaluation over the
role/assignment stores, audit events, and the /rbac HTTP surface.
"""
