"""Migration modules, one per schema version (vNNN_description.py)."""
