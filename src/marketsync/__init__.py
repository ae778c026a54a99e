"""Market synchronization engine for the prediction-market trading assistant."""

__version__ = "0.1.0"
