"""HTTP routers, one per module."""
