"""
User Console data layer.

Backs the "edit user" workflow with a client-side consistency layer:
- Read-through caches for the roles/permissions catalogs and user details
- Optimistic mutations with refetch-on-failure
- Minimal permission-override diffs on save
- Snapshot-based dirty checking for the edit modal

Structure:
- app.main: Composition root building the process-wide services.
- app.adapters: HTTP client for the remote users API.
- app.caching: TTL store, generation ledger, in-flight registry, loaders.
- app.domain: Models, optimistic mutations, override diff, dirty guard,
  edit controller.
- app.events: Typed notification channel for cross-component updates.
"""
