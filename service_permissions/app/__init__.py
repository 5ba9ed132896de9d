"""
Access Permissions engine package.

Decides whether a principal may perform a named permission given an
evaluation context. It provides:

- app.manager: PermissionManager, the public decision API, and the
  create_permission_manager factory.
- app.store: Per-principal role/permission storage and the loader contract.
- app.rules: Permission model, condition evaluation and scope checks.
- app.cache: In-memory TTL + LRU decision cache and caching strategies.
- app.events: Decision and lifecycle events.
- app.config: PermissionManagerConfig (pydantic-settings).

Guidelines:
- Loading is asynchronous; deciding is synchronous and never fails open.
- Roles arrive from the loader already flattened.
- Cached decisions may be stale for up to their TTL after a reload.
"""
