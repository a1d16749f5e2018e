from enum import Enum


class StitchState(str, Enum):
    """
    Final-render state of a documentary script, driven by the stitcher.
    """

    # No stitch attempted yet
    PENDING = "pending"

    # Final video assembled and recorded
    COMPLETED = "completed"

    # Last stitch attempt failed; requires an explicit re-trigger
    FAILED = "failed"
