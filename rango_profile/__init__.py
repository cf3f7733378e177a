"""Saved addresses and payment instruments for Rango customer profiles."""
