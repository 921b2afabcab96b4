"""Front-door Gateway: authenticates, routes and records submissions."""
