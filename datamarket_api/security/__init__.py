"""Key handling, sessions and the cryptographic protocol pieces."""
