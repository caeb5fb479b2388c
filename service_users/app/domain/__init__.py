"""
Domain package for the user edit workflow.

- models: Wire/cache records and response classification
- optimistic: Mutations that keep the cache consistent
- overrides: Minimal permission-override diff
- snapshot: Draft state and dirty-checking guard
- edit_controller: Edit modal session controller
"""
