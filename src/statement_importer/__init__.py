"""Statement import pipeline: validate, parse, normalize, categorize and dedupe bank exports."""

__version__ = "0.1.0"
