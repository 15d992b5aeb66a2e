"""Off-chain content access."""
