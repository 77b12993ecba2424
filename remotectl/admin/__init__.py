"""Admin HTTP routers."""
