"""HTTP feature routers."""
