"""PaperBet — paper-trading sports betting engine."""

__version__ = "1.0.0"
