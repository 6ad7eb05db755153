"""Infrastructure adapters: database, redis, payment processors, notifications."""
