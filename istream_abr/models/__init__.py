from istream_abr.models.abr_objects import (ControlParameters, DecisionState, OptimizerParameters, State,
                                            SwitchRequest)

__all__ = ["ControlParameters", "DecisionState", "OptimizerParameters", "State", "SwitchRequest"]
