"""Infrastructure adapters: logging, database, transports, resilience."""
