"""Portal event registrations: capacity accounting and waitlist promotion."""

__version__ = "0.1.0"
