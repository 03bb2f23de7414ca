"""pkgwatch: supply-chain risk monitoring for npm packages."""

__version__ = "0.1.0"
