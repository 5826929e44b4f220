"""Role Holder Reconciler.

Grants and revokes "roles" (named bundles of platform capabilities, such as
notification listener access for a companion watch app) and re-derives who
holds a role from live platform state:
 - pluggable per-role behaviors (grant / revoke / query holders)
 - an immutable role catalog
 - per (role, package, user) request handles: idle -> running -> success|failure
 - an in-memory platform model for demos and tests
"""
