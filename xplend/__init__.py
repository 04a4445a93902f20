"""XP lending pool engine."""
