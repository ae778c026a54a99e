"""HTTP services exposing the market sync engine."""
