"""rugs: build badge and per-change user metadata server."""
