"""
All the plain data structures: the attribute trees, references, settings.

The attribute trees (the manifests and the live objects) are schema-less dicts.
Only a few well-known fields have narrow accessors; all kind-specific rules
address the fields by paths and are kept as data tables, not as logic.

All the functions are purely data-manipulative and computational.
No external calls or any i/o activities are done here.
"""
