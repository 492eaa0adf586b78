"""Application assembly: factory and lifespan."""
