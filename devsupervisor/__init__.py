"""
devsupervisor - Development server supervisor for PHP applications.

Runs the PHP built-in web server as a child process, turns its output into
structured log records, and restarts it when the project's dotenv files change.
"""

__version__ = "0.1.0"
