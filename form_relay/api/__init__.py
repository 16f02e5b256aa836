"""HTTP surface of the receiver."""
