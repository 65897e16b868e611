"""
TRUSTGATE - Two-Factor Authentication and Device Trust

Step-up authentication for web applications.

This package provides the device-trust policy engine, the request gate
that enforces second-factor verification, the enrollment backend used by
the 2FA setup wizard, and the FastAPI service that wires them together.
"""

__version__ = "0.1.0"
__author__ = "TRUSTGATE Team"
