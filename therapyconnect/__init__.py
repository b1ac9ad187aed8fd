"""TherapyConnect provider credentialing engine."""

__version__ = "0.1.0"
