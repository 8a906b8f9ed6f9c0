"""Maraude Tracker - street outreach coordination API"""

__version__ = "1.0.0"
