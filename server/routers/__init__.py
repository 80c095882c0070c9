"""HTTP routers for the Uno server."""
