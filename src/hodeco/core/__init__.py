"""Core data structures: offset tables and the store that holds them."""
