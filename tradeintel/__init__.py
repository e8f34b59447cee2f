"""Trading-intelligence pipeline: indicators, regime, scoring, exits and outcome learning."""

__version__ = "0.1.0"
