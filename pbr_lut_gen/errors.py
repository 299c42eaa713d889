"""
Exceptions raised by the PBR LUT generator.
"""
from __future__ import annotations


class PBRError(Exception):
    """Base class for all generator errors."""
    pass


class MaterialTemplateError(PBRError):
    """Raised when a PBR surface has no template_material to patch."""
    pass


class VTFWriteError(PBRError):
    """Raised when a pixel buffer does not match the texture dimensions."""
    pass
