"""Category detectors. Importing this package fills ``CATALOG``."""

from auditlens.analyzers.detectors import (  # noqa: F401
    overflow,
    reentrancy,
    call_safety,
    access_control,
    logic_defect,
    randomness_misuse,
    freeze_bypass,
)
