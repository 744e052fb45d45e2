"""FastAPI operator surface of the edge node."""
