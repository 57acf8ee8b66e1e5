# Services module initialization. Submodules are imported where needed.
