"""Background loops started by the application lifespan."""
