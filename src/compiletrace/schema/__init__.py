from .compile_id import CompileId, GLOBAL_KEY
from .envelope import Envelope
from .frames import FrameSummary

__all__ = ["CompileId", "Envelope", "FrameSummary", "GLOBAL_KEY"]
