"""League competition engine: scheduling, result workflow, running sessions and standings."""
