"""Reference client analyses built on the dataflow engine."""

from .constant_propagation import (  # noqa: F401
    Constant,
    ConstantKind,
    ConstantPropagationStore,
    ConstantPropagationTransfer,
)
from .live_variables import LiveVarStore, LiveVarTransfer  # noqa: F401
from .nullness import (  # noqa: F401
    MAYBE_NULL,
    NON_NULL,
    NULL,
    Nullness,
    NullnessKind,
    NullnessStore,
    NullnessTransfer,
)
