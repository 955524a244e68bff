"""Domain models exchanged between the pipeline layers."""

from microfinder.classification import Classification
from .discovery import Discovery, MicrobeAnalysis
from .image import ImagePayload
from .profile import Profile

__all__ = ["Classification", "Discovery", "ImagePayload", "MicrobeAnalysis", "Profile"]
