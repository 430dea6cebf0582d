# Brain package - Copy decision making
from dexmirror.brain.decider import evaluate
from dexmirror.brain.risk import RiskGate
from dexmirror.brain.sizer import calculate_copy_amount

__all__ = ["evaluate", "RiskGate", "calculate_copy_amount"]
