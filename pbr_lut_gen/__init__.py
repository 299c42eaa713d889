"""PBR LUT generator for func_ggx_surface entities in Source VMF maps."""

__version__ = '0.1.0'

from .errors import MaterialTemplateError, PBRError, VTFWriteError
from .lights import LightDef, extract_lights, strip_pbr_entities
from .pipeline import LightCluster, process_map_pipeline
from .vmf_parser import VMFMap, VMFParseError
