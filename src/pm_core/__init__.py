"""PM Core - project management backend with role-based access and notifications."""

__version__ = "1.0.0"
