"""Session clock, regime classification, signal generation and scoring."""
