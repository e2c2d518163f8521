"""Task breakdown editor - core package.

Modules: ``models`` (data model), ``tree`` (update operations),
``reconciler`` (proposal merge), ``canvas`` (card placement),
``sorting`` (action item tables), ``session`` (editing context),
``workspace`` (task storage).
"""

# No imports at package level to avoid circular import issues
# Import modules directly where needed

__version__ = "0.1.0"
