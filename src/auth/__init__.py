"""Identity and capabilities of the caller."""

from .permissions import Capability, Principal, UserRole


__all__ = ["Capability", "Principal", "UserRole"]
