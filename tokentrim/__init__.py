"""tokentrim: compact developer tool output and account for the tokens saved."""

__version__ = "0.1.0"
