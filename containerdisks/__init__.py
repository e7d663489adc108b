"""containerdisks package."""

__all__ = [
    "artifacts",
    "build",
    "cli",
    "cluster",
    "config",
    "console",
    "constants",
    "download",
    "exceptions",
    "guest_tests",
    "hashsum",
    "models",
    "publish",
    "repository",
    "utils",
    "verify",
    "vmi",
    "workers",
]
