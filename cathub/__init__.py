"""cathub: one paginated view over many registries of servers and skills."""

__version__ = "0.1.0"
