from licensetag.application.services.coverage_index import CoverageIndex
from licensetag.application.services.filter_config import DecodeContext, decode_filter
from licensetag.application.services.filters import FilterNode, NodeKind
from licensetag.application.services.freeze import freeze, unfreeze
from licensetag.application.services.tagger import Tagger, load_tagger

__all__ = [
    "CoverageIndex",
    "DecodeContext",
    "decode_filter",
    "FilterNode",
    "NodeKind",
    "freeze",
    "unfreeze",
    "Tagger",
    "load_tagger",
]
