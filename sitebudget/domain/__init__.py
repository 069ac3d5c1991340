"""Pure budget value objects."""
