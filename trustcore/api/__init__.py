"""HTTP surface of the trust-decision core."""
