from dataclasses import replace

from vaultbot.config import BotConfig
from vaultbot.core.state import EngineState


class TrainingCalibrator:
    """
    Tightens the acceptance bar while paper trading: every
    `trades_per_calibration` paper trades, if the running win rate is under
    `win_rate_threshold`, raise `min_probability` by one step (capped).
    Never lowers it.
    """

    def __init__(self, cfg: BotConfig):
        self.cfg = cfg

    def calibrate(self, state: EngineState) -> EngineState:
        if state.paper_trades_count == 0:
            return state
        if state.paper_trades_count % self.cfg.trades_per_calibration != 0:
            return state
        if state.win_rate >= self.cfg.win_rate_threshold:
            return state
        raised = min(self.cfg.max_probability,
                     state.min_probability + self.cfg.probability_increment)
        return replace(state, min_probability=raised)
