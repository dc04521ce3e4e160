"""Meeting records and lifecycle events consumed by calendar sync."""
