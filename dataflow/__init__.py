"""Generic dataflow analysis framework over method control-flow graphs."""

from .analysis import Analysis, BackwardAnalysis, ForwardAnalysis  # noqa: F401
from .analysis_types import AnalysisConfig, AnalysisStats, Direction  # noqa: F401
from .api import (  # noqa: F401
    analyze_source,
    build_cfg_from_source,
    dump_cfg,
    dump_ir,
    lower_method,
)
from .cfg import ControlFlowGraph, build_cfg  # noqa: F401
from .errors import LatticeContractViolation, MalformedCFGError  # noqa: F401
from .lattice import AbstractValue, Store  # noqa: F401
from .result import AnalysisResult  # noqa: F401
from .transfer import (  # noqa: F401
    BackwardTransferFunction,
    ConditionalTransferResult,
    RegularTransferResult,
    TransferFunction,
    TransferInput,
    TransferResult,
)
