"""HTTP routers (thin presentation layer over the core)."""
