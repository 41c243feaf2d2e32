# Request-level protections.
