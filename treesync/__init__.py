"""treesync: reconcile a client's file tree against an authoritative server tree."""

__version__ = "0.1.0"
