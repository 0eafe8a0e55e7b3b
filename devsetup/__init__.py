"""devsetup — converge a workstation to a PHP/Laravel development profile."""

__version__ = "0.1.0"
