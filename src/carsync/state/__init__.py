"""State/store layer.

Owns the two per-vehicle maps: the accumulation buffers that events are merged
into, and the table of derived states that the flush loop persists.
"""

from carsync.state.buffers import VehicleBufferStore
from carsync.state.table import VehicleStateTable

__all__ = ["VehicleBufferStore", "VehicleStateTable"]
