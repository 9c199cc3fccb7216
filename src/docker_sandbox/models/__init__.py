# src/docker_sandbox/models/__init__.py

"""
Data models for the sandbox engine.
"""

from .command import Binding, Bindings, Command
from .files import UploadedFile
from .profile import Limits, Profile
from .result import UNKNOWN_EXIT_CODE, Result

__all__ = [
    "Binding",
    "Bindings",
    "Command",
    "Limits",
    "Profile",
    "Result",
    "UNKNOWN_EXIT_CODE",
    "UploadedFile",
]
