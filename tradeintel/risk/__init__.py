"""Risk multiplier and tradability gate."""
