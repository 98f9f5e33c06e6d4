"""FastAPI dependencies shared by feature routers."""
