"""Construction project budget allocation and reallocation engine."""
