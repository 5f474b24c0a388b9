"""HTTP surface for the calendar sync engine."""
