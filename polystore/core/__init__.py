"""Sections, providers and the provider repository."""

from .provider import Provider, ProviderState
from .repository import ConversionFailure, Repository
from .section import Section

__all__ = ["ConversionFailure", "Provider", "ProviderState", "Repository", "Section"]
