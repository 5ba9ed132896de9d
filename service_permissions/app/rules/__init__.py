"""
Rules package.

Defines the permission data model and the pure evaluation pieces used by
the permission manager:

- models: Permission, Role, Condition, Scope, context and result types.
- conditions: Dotted-path resolution, operator comparisons and the
  positional fold that combines a condition list.
- scope: Include/exclude scope membership checks.
- helpers: Builders, filters and validation for permission data.

Nothing in here touches I/O or the cache; evaluation is deterministic for
a given permission and context.
"""
