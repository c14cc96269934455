"""HTTP routers for the crossescrow node server."""
