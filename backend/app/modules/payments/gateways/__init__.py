"""Payment gateway implementations.

Contains implementations for Idram, Ameriabank, Inecobank, and ArCa.
"""

from .idram import IdramGateway
from .ameriabank import AmeriabankGateway
from .inecobank import InecobankGateway
from .arca import ArcaGateway

__all__ = ["IdramGateway", "AmeriabankGateway", "InecobankGateway", "ArcaGateway"]
